"""Async HTTP client for the Lark Open Platform.

Every Lark response is an envelope ``{"code": int, "msg": str, "data": ...}``;
a non-zero code is an application error even when the HTTP status is 200.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://open.larksuite.com"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Code used for failures that never produced a Lark envelope.
TRANSPORT_ERROR_CODE = -1


class LarkClientError(Exception):
    """A Lark API call failed.

    ``code`` is the HTTP status for non-2xx responses, the Lark envelope code
    for application errors, or ``-1`` for timeouts and network failures.
    """

    def __init__(
        self,
        message: str,
        code: int,
        endpoint: str,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.endpoint = endpoint
        self.details = details

    @property
    def status(self) -> int | None:
        """HTTP status when the error came from a non-2xx response."""
        if 100 <= self.code < 600:
            return self.code
        return None


class LarkClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded envelope (code == 0)."""
        request_headers = {"Content-Type": "application/json; charset=utf-8"}
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                verify=True,
            ) as client:
                resp = await client.request(
                    method, endpoint, params=params, json=json, headers=request_headers,
                )
        except httpx.TimeoutException as exc:
            raise LarkClientError(
                "Request timeout", TRANSPORT_ERROR_CODE, endpoint, {"timeout": self._timeout},
            ) from exc
        except httpx.HTTPError as exc:
            raise LarkClientError(
                f"network error: {exc}",
                TRANSPORT_ERROR_CODE,
                endpoint,
                {"original_error": type(exc).__name__},
            ) from exc

        if resp.status_code >= 400:
            try:
                error_body: Any = resp.json()
            except ValueError:
                error_body = resp.text
            logger.error("Lark API error %d at %s: %s", resp.status_code, endpoint, error_body)
            raise LarkClientError(
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                resp.status_code,
                endpoint,
                error_body,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise LarkClientError(
                "Invalid JSON response", resp.status_code, endpoint, resp.text,
            ) from exc

        code = data.get("code", 0) if isinstance(data, dict) else 0
        if code != 0:
            message = data.get("msg") or data.get("message") or "Unknown error"
            raise LarkClientError(message, code, endpoint, data)
        return data

    async def get(
        self,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self.request("GET", endpoint, params=params, headers=headers)

    async def post(
        self,
        endpoint: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self.request("POST", endpoint, params=params, json=json, headers=headers)

    async def authenticated_request(
        self,
        method: str,
        endpoint: str,
        access_token: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        return await self.request(
            method,
            endpoint,
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {access_token}"},
        )
