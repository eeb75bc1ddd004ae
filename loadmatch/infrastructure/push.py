"""
Expo push transport.

One POST per device token.  Transport errors propagate so the outbox
dispatcher can retry the event; users without tokens are a no-op.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from loadmatch.config import settings

logger = logging.getLogger(__name__)


class PushNotifier(Protocol):
    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any],
        channel_id: str = "chat-messages",
    ) -> int: ...


class ExpoPushNotifier:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.expo_push_url
        self.timeout = timeout or settings.push_timeout_seconds
        self._client = client

    @staticmethod
    def message(
        token: str,
        title: str,
        body: str,
        data: dict[str, Any],
        channel_id: str,
    ) -> dict[str, Any]:
        return {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data,
            "priority": "high",
            "channelId": channel_id,
        }

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any],
        channel_id: str = "chat-messages",
    ) -> int:
        """Deliver to every token; returns how many requests succeeded."""
        if not tokens:
            return 0
        if not settings.push_enabled:
            logger.debug("Push disabled, dropping %r", title)
            return 0

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        sent = 0
        try:
            for token in tokens:
                resp = await client.post(
                    self.url,
                    json=self.message(token, title, body, data, channel_id),
                    headers={
                        "Accept": "application/json",
                        "Content-Type": "application/json",
                    },
                )
                resp.raise_for_status()
                sent += 1
        finally:
            if self._client is None:
                await client.aclose()
        return sent
