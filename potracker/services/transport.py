"""
HTTP transport for the purchase-order tracker API.

The request layer only needs an async callable with the ``Transport``
signature; ``HttpTransport`` is the httpx-backed implementation.
"""

from typing import Any, Protocol

import httpx
from loguru import logger

from potracker.services.errors import (
    ApiError,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
)


def _parse_retry_after(value: str | None) -> float | None:
    # HTTP-date values are ignored
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class Transport(Protocol):
    """Async request function wrapped by ResilientClient."""

    async def __call__(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> Any: ...


class HttpTransport:
    """
    httpx-based transport.

    Usage:
        transport = HttpTransport("https://tracker.example.com/api", token=token)
        body = await transport("GET", "/vendors", params={"limit": 50})
        await transport.close()
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._headers = headers or {}
        self._http_client = http_client

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        """Set or clear the bearer token."""
        self._token = token

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def __call__(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> Any:
        """
        Send one request and return the decoded body.

        Raises:
            RequestTimeoutError: If the request times out
            TransportError: If no response was received
            ApiError: If the response status is not 2xx
        """
        client = await self._get_http_client()

        headers = {"Content-Type": "application/json", **self._headers}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = await client.request(
                method=method,
                url=f"{self._base_url}{endpoint}",
                params=params,
                headers=headers,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(endpoint, self._timeout) from e
        except httpx.RequestError as e:
            raise TransportError(
                f"Network error. Please check your connection. ({e})",
                endpoint=endpoint,
            ) from e

        body = self._decode(response)

        if not response.is_success:
            raise self._to_error(endpoint, response, body)

        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decode JSON bodies; wrap anything else as an error envelope."""
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                pass
        return {"success": False, "error": {"message": response.text}}

    def _to_error(
        self, endpoint: str, response: httpx.Response, body: Any
    ) -> ApiError:
        error = body.get("error") if isinstance(body, dict) else None
        error = error if isinstance(error, dict) else {}
        message = error.get("message") or "Request failed"
        status = response.status_code

        logger.error(
            f"API error on {endpoint}: HTTP {status} {message}"
            + (f" ({error['code']})" if error.get("code") else "")
        )

        if status == 401 and self._token:
            logger.warning("Unauthorized response, clearing token")
            self._token = None

        if status == 429:
            return RateLimitError(
                endpoint,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
                message=message,
            )

        return ApiError(
            message,
            status=status,
            endpoint=endpoint,
            code=error.get("code"),
            details=error.get("details"),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
