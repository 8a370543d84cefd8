"""
Telegram Notifier — Bot API sendMessage over httpx
===================================================

One attempt per alert, no retries: the cooldown already prevents a re-fire
and the next cycle re-evaluates conditions anyway.

Outcomes:
  DELIVERED   Telegram accepted the message
  SUPPRESSED  nothing to deliver to: no bot token, no chat id,
              HTTP 403 (user blocked the bot), HTTP 400 (chat not found)
  FAILED      anything else (network error, 5xx, 429, bad response)

Ref: https://core.telegram.org/bots/api#sendmessage
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

import httpx

from liquidity_guard.alerts import AlertKind
from liquidity_guard.messages import format_alert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    message: str
    message_id: Optional[int] = None
    error: Optional[str] = None
    chat_blocked: bool = False


class TelegramNotifier:
    """
    Usage:
        notifier = TelegramNotifier(token, app_url="https://app.example")
        result = await notifier.send_alert(chat_id, AlertKind.OUT_OF_RANGE, payload)
    """

    def __init__(self, bot_token: Optional[str], app_url: str = "http://localhost:3000", timeout: float = 10):
        self.bot_token = bot_token
        self.app_url = app_url
        self.timeout = timeout

    async def send_alert(self, chat_id: Optional[str], kind: AlertKind, payload: Mapping[str, Any]) -> DeliveryResult:
        """Format and send one alert."""
        message = format_alert(kind, payload, self.app_url)
        if not self.bot_token:
            logger.info("No TELEGRAM_BOT_TOKEN; %s alert suppressed", kind.value)
            return DeliveryResult(DeliveryOutcome.SUPPRESSED, message, error="bot token not configured")
        if not chat_id:
            logger.info("Pool %s owner has no Telegram chat linked", payload.get("id"))
            return DeliveryResult(DeliveryOutcome.SUPPRESSED, message, error="no chat id")
        return await self.send_message(chat_id, message)

    async def send_message(self, chat_id: str, text: str) -> DeliveryResult:
        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        body = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.error("Telegram send to %s failed: %s", chat_id, e)
            return DeliveryResult(DeliveryOutcome.FAILED, text, error=f"{type(e).__name__}: {e}")

        if resp.status_code == 403:
            logger.info("User %s blocked the bot", chat_id)
            return DeliveryResult(
                DeliveryOutcome.SUPPRESSED, text, error="bot blocked by user", chat_blocked=True
            )
        if resp.status_code == 400:
            logger.info("Chat %s not found", chat_id)
            return DeliveryResult(DeliveryOutcome.SUPPRESSED, text, error="chat not found")
        if resp.status_code != 200:
            logger.error("Telegram API returned HTTP %s", resp.status_code)
            return DeliveryResult(DeliveryOutcome.FAILED, text, error=f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            return DeliveryResult(DeliveryOutcome.FAILED, text, error="response is not JSON")
        if not data.get("ok"):
            return DeliveryResult(DeliveryOutcome.FAILED, text, error=str(data.get("description")))
        message_id = data.get("result", {}).get("message_id")
        return DeliveryResult(DeliveryOutcome.DELIVERED, text, message_id=message_id)
