import asyncio
import logging
from datetime import UTC, datetime

from telehook.config import Settings
from telehook.escaping import ParseMode, escape_markdown_v2
from telehook.telegram import TelegramClient
from telehook.webhooks import DeliveryTarget

logger = logging.getLogger(__name__)


def format_failure_message(webhook_name: str, failure_type: str, error: str, request_id: str | None) -> str:
    timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        "🚨 *Webhook Failure Alert*",
        "",
        f"*Webhook:* {escape_markdown_v2(webhook_name)}",
        f"*Failure Type:* {escape_markdown_v2(failure_type)}",
        f"*Time:* {escape_markdown_v2(timestamp)}",
    ]
    if request_id:
        lines.append(f"*Request ID:* {escape_markdown_v2(request_id)}")
    lines += ["", "*Error Details:*", escape_markdown_v2(error)]
    return "\n".join(lines)


class FailureNotifier:
    """Best-effort alerts about failed webhook requests to an admin chat."""

    def __init__(self, telegram: TelegramClient, settings: Settings) -> None:
        self._telegram = telegram
        self._settings = settings
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        s = self._settings
        return s.enable_failure_notifications and bool(s.notification_bot_token and s.notification_chat_id)

    def notify(self, webhook_name: str, failure_type: str, error: str, request_id: str | None = None) -> None:
        if not self.enabled:
            logger.debug("Failure notifications disabled, skipping %s for %s", failure_type, webhook_name)
            return
        task = asyncio.create_task(self.send(webhook_name, failure_type, error, request_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, webhook_name: str, failure_type: str, error: str, request_id: str | None = None) -> None:
        target = DeliveryTarget(
            bot_token=self._settings.notification_bot_token or "",
            chat_id=self._settings.notification_chat_id or "",
            topic_id=self._settings.notification_topic_id,
        )
        text = format_failure_message(webhook_name, failure_type, error, request_id)
        try:
            outcome = await self._telegram.send_message(target, text, ParseMode.MARKDOWN_V2)
        except Exception:
            logger.exception("Error sending failure notification for webhook %s", webhook_name)
            return
        if outcome.success:
            logger.info("Failure notification sent for webhook %s", webhook_name)
        else:
            logger.warning("Failure notification for webhook %s not delivered: %s", webhook_name, outcome.error)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
