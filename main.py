"""
potracker main entry point.
Fetches a few endpoints through ResilientClient and prints client health.

Usage:
    python main.py /dashboard/metrics /vendors
"""

import asyncio
import json
import sys

from loguru import logger

from potracker.services import ResilientClient, ServiceError
from potracker.settings import global_settings


async def main(endpoints: list[str]) -> int:
    """Main function."""
    logger.info(f"Starting potracker client against {global_settings.api_base_url}")
    failures = 0

    async with ResilientClient.from_settings(global_settings) as client:
        client.start()

        for endpoint in endpoints:
            try:
                body = await client.get(endpoint)
                logger.info(f"GET {endpoint}: {json.dumps(body, default=str)[:200]}")
            except ServiceError as e:
                failures += 1
                logger.error(f"GET {endpoint} failed: {e}")

        logger.info(f"Client health: {client.get_health_status()}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:] or ["/health"])))
