"""App access token provider with in-process caching."""

from __future__ import annotations

import asyncio
import logging
import time

from src.lark.client import LarkClient, LarkClientError

logger = logging.getLogger(__name__)

APP_ACCESS_TOKEN_ENDPOINT = "/open-apis/auth/v3/app_access_token/internal"
EXPIRY_MARGIN_SECONDS = 60


class AppAccessTokenProvider:
    """Fetches and caches the app access token.

    The token is reused until ``EXPIRY_MARGIN_SECONDS`` before it expires.
    Concurrent callers that find the cache stale share a single refresh.
    """

    def __init__(self, client: LarkClient, app_id: str, app_secret: str) -> None:
        self._client = client
        self._app_id = app_id
        self._app_secret = app_secret
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _cached(self) -> str | None:
        if self._token and self._expires_at > time.monotonic() + EXPIRY_MARGIN_SECONDS:
            return self._token
        return None

    async def get_token(self) -> str:
        token = self._cached()
        if token is not None:
            return token

        async with self._lock:
            token = self._cached()
            if token is not None:
                return token
            return await self._refresh()

    async def _refresh(self) -> str:
        # This endpoint returns the token at the envelope root, not under "data".
        data = await self._client.post(
            APP_ACCESS_TOKEN_ENDPOINT,
            json={"app_id": self._app_id, "app_secret": self._app_secret},
        )
        token = data.get("app_access_token")
        expire = data.get("expire")
        if not token or not isinstance(expire, int):
            raise LarkClientError(
                "Failed to get app access token", -1, APP_ACCESS_TOKEN_ENDPOINT, data,
            )

        self._token = token
        self._expires_at = time.monotonic() + expire
        logger.info("Refreshed Lark app access token (expires in %ds)", expire)
        return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0
