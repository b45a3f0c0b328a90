import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from telehook.errors import DeliveryConfigurationError
from telehook.escaping import ParseMode
from telehook.webhooks import DeliveryTarget

logger = logging.getLogger(__name__)


class DeliveryErrorKind(StrEnum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    REJECTED = "rejected"


@dataclass(frozen=True)
class DeliveryOutcome:
    status_code: int
    success: bool
    response_text: str | None = None
    error_kind: DeliveryErrorKind | None = None
    error: str | None = None


def _api_rejected(body: str) -> bool:
    try:
        data = json.loads(body)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("ok") is False


class TelegramClient:
    def __init__(self, http: httpx.AsyncClient, api_base: str, timeout: float) -> None:
        self._http = http
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    async def send_message(
        self,
        target: DeliveryTarget,
        text: str,
        parse_mode: ParseMode | str | None = None,
    ) -> DeliveryOutcome:
        if not target.bot_token or not target.chat_id:
            raise DeliveryConfigurationError("Delivery target requires a bot token and a chat id")

        mode = parse_mode if isinstance(parse_mode, ParseMode) else ParseMode.parse(parse_mode)
        payload: dict[str, Any] = {
            "chat_id": target.chat_id,
            "text": text,
            "disable_web_page_preview": target.disable_web_page_preview,
            "disable_notification": target.disable_notification,
        }
        if mode.api_value:
            payload["parse_mode"] = mode.api_value
        if target.topic_id:
            payload["message_thread_id"] = target.topic_id

        url = f"{self._api_base}/bot{target.bot_token}/sendMessage"
        logger.debug("Sending message to chat %s, length %d", target.chat_id, len(text))
        try:
            resp = await self._http.post(url, json=payload, timeout=self._timeout)
        except httpx.TimeoutException as e:
            logger.error("Timeout sending message to chat %s: %s", target.chat_id, type(e).__name__)
            return DeliveryOutcome(
                status_code=504,
                success=False,
                error_kind=DeliveryErrorKind.TIMEOUT,
                error="Request timeout while sending Telegram message",
            )
        except httpx.TransportError as e:
            logger.error("Transport error sending message to chat %s: %s", target.chat_id, type(e).__name__)
            return DeliveryOutcome(
                status_code=502,
                success=False,
                error_kind=DeliveryErrorKind.NETWORK,
                error="HTTP request failed while sending Telegram message",
            )

        body = resp.text
        if resp.is_success and not _api_rejected(body):
            logger.debug("Message delivered to chat %s", target.chat_id)
            return DeliveryOutcome(status_code=resp.status_code, success=True, response_text=body)

        status_code = resp.status_code if resp.status_code >= 400 else 502
        logger.error("Telegram API error for chat %s status=%s body=%s", target.chat_id, resp.status_code, body)
        return DeliveryOutcome(
            status_code=status_code,
            success=False,
            response_text=body,
            error_kind=DeliveryErrorKind.REJECTED,
            error=f"Telegram API returned error: {body}",
        )
