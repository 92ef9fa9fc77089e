"""Tests for HttpTransport request shaping and error mapping."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from potracker.services.client import ResilientClient
from potracker.services.errors import (
    ApiError,
    ErrorKind,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
)
from potracker.services.retry import RetryPolicy
from potracker.services.transport import HttpTransport

BASE_URL = "https://tracker.test/api"


def make_transport(handler, **kwargs) -> HttpTransport:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport(BASE_URL, http_client=http_client, **kwargs)


class TestRequests:
    """Successful request shaping."""

    async def test_get_with_params_and_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["limit"] = request.url.params["limit"]
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True, "data": []})

        transport = make_transport(handler, token="tok")
        body = await transport("GET", "/vendors", params={"limit": 50})

        assert body == {"success": True, "data": []}
        assert seen == {"path": "/api/vendors", "limit": "50", "auth": "Bearer tok"}
        await transport.close()

    async def test_post_sends_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"success": True, "data": {"id": "PO-1"}})

        transport = make_transport(handler)
        body = await transport("POST", "/purchase-orders", json_data={"poNumber": "PO-1"})

        assert seen == {"method": "POST", "body": {"poNumber": "PO-1"}}
        assert body["data"]["id"] == "PO-1"

    async def test_no_authorization_without_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "authorization" not in request.headers
            return httpx.Response(200, json={})

        await make_transport(handler)("GET", "/health")

    async def test_non_json_body_is_wrapped(self):
        transport = make_transport(lambda request: httpx.Response(200, text="pong"))

        body = await transport("GET", "/ping")

        assert body == {"success": False, "error": {"message": "pong"}}


class TestErrorMapping:
    """Responses and transport failures become structured errors."""

    async def test_client_error(self):
        def handler(request):
            return httpx.Response(
                404,
                json={
                    "success": False,
                    "error": {"message": "PO not found", "code": "NOT_FOUND", "details": {"id": "X"}},
                },
            )

        with pytest.raises(ApiError) as exc_info:
            await make_transport(handler)("GET", "/purchase-orders/X")

        error = exc_info.value
        assert str(error) == "PO not found"
        assert error.status == 404
        assert error.code == "NOT_FOUND"
        assert error.details == {"id": "X"}
        assert error.endpoint == "/purchase-orders/X"
        assert error.kind is ErrorKind.CLIENT

    async def test_server_error_with_text_body(self):
        transport = make_transport(lambda request: httpx.Response(500, text="Internal crash"))

        with pytest.raises(ApiError) as exc_info:
            await transport("GET", "/dashboard/metrics")

        assert str(exc_info.value) == "Internal crash"
        assert exc_info.value.kind is ErrorKind.SERVER

    async def test_unauthorized_clears_token(self):
        transport = make_transport(
            lambda request: httpx.Response(401, json={"error": {"message": "Expired"}}),
            token="stale",
        )

        with pytest.raises(ApiError):
            await transport("GET", "/users")

        assert transport.token is None

    async def test_rate_limit(self):
        transport = make_transport(
            lambda request: httpx.Response(429, headers={"Retry-After": "5"}, json={})
        )

        with pytest.raises(RateLimitError) as exc_info:
            await transport("GET", "/search")

        assert exc_info.value.status == 429
        assert exc_info.value.retry_after == 5.0

    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await make_transport(handler)("GET", "/vendors")

        assert exc_info.value.kind is ErrorKind.TRANSPORT
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(RequestTimeoutError):
            await make_transport(handler, timeout=5.0)("GET", "/vendors")


class TestClientOverHttp:
    """End to end through ResilientClient."""

    async def test_server_errors_retried_then_cached(self):
        responses = iter(
            [
                httpx.Response(503, json={"error": {"message": "busy"}}),
                httpx.Response(502, text="bad gateway"),
                httpx.Response(200, json={"success": True, "data": {"count": 3}}),
            ]
        )
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return next(responses)

        sleep = AsyncMock()
        client = ResilientClient(
            make_transport(handler),
            retry_policy=RetryPolicy(max_retries=3, initial_delay=timedelta(milliseconds=10)),
            sleep=sleep,
        )

        first = await client.get("/dashboard/metrics")
        second = await client.get("/dashboard/metrics")

        assert first == second == {"success": True, "data": {"count": 3}}
        assert len(calls) == 3
        assert sleep.await_count == 2
        await client.close()
