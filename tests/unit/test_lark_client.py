"""Tests for the Lark HTTP client and app access token provider."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from unittest.mock import patch

import httpx
import pytest

from src.lark.client import TRANSPORT_ERROR_CODE, LarkClient, LarkClientError
from src.lark.token import APP_ACCESS_TOKEN_ENDPOINT, AppAccessTokenProvider


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> LarkClient:
    return LarkClient("https://lark.test", transport=httpx.MockTransport(handler))


class TestLarkClient:
    @pytest.mark.asyncio
    async def test_returns_envelope_on_success(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"code": 0, "data": {"x": 1}}))
        data = await client.get("/open-apis/thing")
        assert data["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_sends_json_and_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 0})

        await _client(handler).post("/p", json={"a": 1}, params={"q": "v"})
        request = seen[0]
        assert request.method == "POST"
        assert request.url.params["q"] == "v"
        assert json.loads(request.content) == {"a": 1}
        assert request.headers["content-type"].startswith("application/json")

    @pytest.mark.asyncio
    async def test_authenticated_request_adds_bearer(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 0})

        await _client(handler).authenticated_request("GET", "/p", "tok")
        assert seen[0].headers["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_nonzero_envelope_code_raises(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"code": 99991663, "msg": "gone"}))
        with pytest.raises(LarkClientError) as exc_info:
            await client.get("/p")
        err = exc_info.value
        assert err.code == 99991663
        assert str(err) == "gone"
        assert err.endpoint == "/p"
        assert err.status is None

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        client = _client(lambda r: httpx.Response(503, json={"msg": "down"}))
        with pytest.raises(LarkClientError) as exc_info:
            await client.get("/p")
        err = exc_info.value
        assert err.code == 503
        assert err.status == 503
        assert str(err) == "HTTP 503: Service Unavailable"
        assert err.details == {"msg": "down"}

    @pytest.mark.asyncio
    async def test_invalid_json_response(self) -> None:
        client = _client(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(LarkClientError, match="Invalid JSON response"):
            await client.get("/p")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LarkClientError) as exc_info:
            await _client(handler).get("/p")
        assert exc_info.value.code == TRANSPORT_ERROR_CODE
        assert str(exc_info.value) == "Request timeout"

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LarkClientError) as exc_info:
            await _client(handler).get("/p")
        assert str(exc_info.value).startswith("network error")
        assert exc_info.value.status is None

    def test_base_url_trailing_slash_stripped(self) -> None:
        assert LarkClient("https://lark.test/").base_url == "https://lark.test"


def _token_handler(calls: list[httpx.Request], expire: int = 7200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        assert request.url.path == APP_ACCESS_TOKEN_ENDPOINT
        return httpx.Response(200, json={
            "code": 0,
            "msg": "ok",
            "app_access_token": f"token-{len(calls)}",
            "expire": expire,
        })

    return handler


class TestAppAccessTokenProvider:
    @pytest.mark.asyncio
    async def test_fetches_with_app_credentials(self) -> None:
        calls: list[httpx.Request] = []
        provider = AppAccessTokenProvider(_client(_token_handler(calls)), "cli_1", "secret")
        assert await provider.get_token() == "token-1"
        assert json.loads(calls[0].content) == {"app_id": "cli_1", "app_secret": "secret"}

    @pytest.mark.asyncio
    async def test_token_is_cached(self) -> None:
        calls: list[httpx.Request] = []
        provider = AppAccessTokenProvider(_client(_token_handler(calls)), "a", "s")
        await provider.get_token()
        assert await provider.get_token() == "token-1"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_expiry_margin(self) -> None:
        calls: list[httpx.Request] = []
        provider = AppAccessTokenProvider(_client(_token_handler(calls, expire=100)), "a", "s")
        with patch("src.lark.token.time.monotonic", return_value=1000.0):
            await provider.get_token()
        with patch("src.lark.token.time.monotonic", return_value=1041.0):
            assert await provider.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self) -> None:
        calls: list[httpx.Request] = []
        provider = AppAccessTokenProvider(_client(_token_handler(calls)), "a", "s")
        tokens = await asyncio.gather(*(provider.get_token() for _ in range(5)))
        assert set(tokens) == {"token-1"}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self) -> None:
        calls: list[httpx.Request] = []
        provider = AppAccessTokenProvider(_client(_token_handler(calls)), "a", "s")
        await provider.get_token()
        provider.invalidate()
        assert await provider.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_missing_token_in_response(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"code": 0, "msg": "ok"}))
        provider = AppAccessTokenProvider(client, "a", "s")
        with pytest.raises(LarkClientError, match="Failed to get app access token"):
            await provider.get_token()

    @pytest.mark.asyncio
    async def test_auth_failure_propagates(self) -> None:
        client = _client(
            lambda r: httpx.Response(200, json={"code": 10003, "msg": "invalid app_secret"}),
        )
        provider = AppAccessTokenProvider(client, "a", "bad")
        with pytest.raises(LarkClientError) as exc_info:
            await provider.get_token()
        assert exc_info.value.code == 10003
