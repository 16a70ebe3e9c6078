"""Deliver run summaries to notification channels."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx

from catalog_sync.config import Settings
from catalog_sync.db.repositories import LookupRepository
from catalog_sync.ingest.http import build_session
from catalog_sync.ingest.models import NotificationChannel
from catalog_sync.notify.render import render_message

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    pass


class NotificationDispatcher:
    def __init__(
        self,
        lookups: LookupRepository,
        settings: Settings,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.lookups = lookups
        self.api_base = settings.telegram_api_base.rstrip("/")
        self._session = session

    async def notify(self, channel_id: int, summary: Mapping[str, Any]) -> None:
        channel = await asyncio.get_running_loop().run_in_executor(
            None, self.lookups.get_channel, channel_id
        )
        if channel is None or not channel.active:
            logger.info("Notification channel %s missing or inactive; skipping", channel_id)
            return
        kind = channel.type.upper()
        if kind == "TELEGRAM":
            await self._send_telegram(channel, render_message(summary))
        elif kind == "WEBHOOK":
            await self._send_webhook(channel, summary)
        else:
            logger.info("Notification (log) -> %s: %s", channel.name, render_message(summary))

    async def _send_telegram(self, channel: NotificationChannel, text: str) -> None:
        token = channel.config.get("bot_token")
        chat_id = channel.config.get("chat_id")
        if not token or not chat_id:
            raise NotificationError(f"Telegram channel {channel.id} needs bot_token and chat_id")
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        await self._post(f"{self.api_base}/bot{token}/sendMessage", payload)

    async def _send_webhook(self, channel: NotificationChannel, summary: Mapping[str, Any]) -> None:
        url = channel.config.get("url")
        if not url:
            raise NotificationError(f"Webhook channel {channel.id} needs a url")
        await self._post(url, dict(summary), headers=channel.config.get("headers") or {})

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> None:
        if self._session is not None:
            response = await self._session.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return
        async with build_session(timeout=15.0) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
