import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from telehook.converter import loads_payload, nesting_depth
from telehook.errors import FailureKind
from telehook.escaping import ParseMode
from telehook.formatting import MessageFormatter
from telehook.logging_setup import request_id_var
from telehook.metrics import DELIVERY_FAILURES_TOTAL, PROCESSING_DURATION, WEBHOOK_REQUESTS_TOTAL
from telehook.notifications import FailureNotifier
from telehook.request_log import RequestLogger, RequestMetadata, RequestTrace
from telehook.telegram import DeliveryErrorKind, TelegramClient
from telehook.validation import PayloadValidator
from telehook.webhooks import SQLiteWebhookStore, WebhookConfig

logger = logging.getLogger(__name__)

_DELIVERY_FAILURES = {
    DeliveryErrorKind.NETWORK: FailureKind.DELIVERY_NETWORK_ERROR,
    DeliveryErrorKind.TIMEOUT: FailureKind.DELIVERY_TIMEOUT,
    DeliveryErrorKind.REJECTED: FailureKind.DELIVERY_REJECTED,
}


@dataclass
class ProcessingResult:
    status_code: int
    body: dict[str, Any]
    failure_kind: FailureKind | None = None
    request_id: str | None = None

    @property
    def success(self) -> bool:
        return self.failure_kind is None

    @classmethod
    def failure(cls, status_code: int, kind: FailureKind, message: str, details: list[str] | None = None):
        body: dict[str, Any] = {"message": message}
        if details:
            body["details"] = details
        return cls(status_code=status_code, body=body, failure_kind=kind)


class WebhookProcessor:
    def __init__(
        self,
        webhooks: SQLiteWebhookStore,
        validator: PayloadValidator,
        formatter: MessageFormatter,
        telegram: TelegramClient,
        request_logger: RequestLogger,
        notifier: FailureNotifier | None = None,
        max_payload_bytes: int = 1024 * 1024,
        max_payload_depth: int = 64,
        development: bool = False,
    ) -> None:
        self._webhooks = webhooks
        self._validator = validator
        self._formatter = formatter
        self._telegram = telegram
        self._log = request_logger
        self._notifier = notifier
        self._max_payload_bytes = max_payload_bytes
        self._max_payload_depth = max_payload_depth
        self._development = development

    async def process_webhook(
        self,
        public_id: str,
        raw_payload: str | bytes,
        metadata: RequestMetadata,
    ) -> ProcessingResult:
        trace = self._log.start_request(metadata)
        token = request_id_var.set(trace.request_id)
        logger.info("Webhook request received for %s", public_id)
        try:
            try:
                result = await self._run_stages(public_id, raw_payload, metadata, trace)
            except Exception as e:
                logger.exception("Unexpected error processing webhook %s", public_id)
                details = [f"{type(e).__name__}: {e}"] if self._development else None
                result = ProcessingResult.failure(500, FailureKind.INTERNAL_FAULT, "Internal server error", details)
                self._notify(trace, "Processing Error", str(e))

            result.request_id = trace.request_id
            await self._log.complete_request(trace, result.status_code, result.body, result.failure_kind)
            WEBHOOK_REQUESTS_TOTAL.labels(result=str(result.failure_kind or "success")).inc()
            PROCESSING_DURATION.observe(trace.processing_time_ms / 1000)
            if result.success:
                logger.info("Webhook %s processed successfully in %dms", public_id, trace.processing_time_ms)
            return result
        finally:
            request_id_var.reset(token)

    async def _run_stages(
        self,
        public_id: str,
        raw_payload: str | bytes,
        metadata: RequestMetadata,
        trace: RequestTrace,
    ) -> ProcessingResult:
        config, failure = await self._resolve(public_id, metadata, trace)
        if failure is not None:
            return failure

        payload, violations = self._parse_and_validate(raw_payload, config)
        self._log.log_validation(trace, violations)
        if violations:
            logger.warning("Payload validation failed for webhook %s: %s", config.uuid, violations)
            return ProcessingResult.failure(400, FailureKind.PAYLOAD_INVALID, "Payload validation failed", violations)

        formatted = await self._formatter.format_message(config, payload)
        if not formatted.success:
            self._log.record_stage(trace, "format", "failed", "; ".join(formatted.errors))
            logger.warning("Message formatting failed for webhook %s: %s", config.uuid, formatted.errors)
            self._notify(trace, "Message Formatting", "; ".join(formatted.errors), config)
            return ProcessingResult.failure(
                500,
                FailureKind.TEMPLATE_RENDER_FAILURE,
                "Message formatting failed",
                formatted.errors,
            )
        self._log.log_message_formatting(trace, formatted.text)

        outcome = await self._telegram.send_message(
            config.target,
            formatted.text,
            ParseMode.parse(config.parse_mode),
        )
        self._log.log_delivery(trace, outcome)
        if outcome.success:
            return ProcessingResult(status_code=200, body={"message": "Message forwarded successfully"})

        DELIVERY_FAILURES_TOTAL.labels(kind=str(outcome.error_kind)).inc()
        self._notify(trace, "Telegram API Error", outcome.error or "Unknown error", config)
        return ProcessingResult.failure(
            outcome.status_code,
            _DELIVERY_FAILURES[outcome.error_kind],
            "Telegram API error occurred",
            [outcome.error] if outcome.error else None,
        )

    async def _resolve(
        self,
        public_id: str,
        metadata: RequestMetadata,
        trace: RequestTrace,
    ) -> tuple[WebhookConfig | None, ProcessingResult | None]:
        try:
            uuid.UUID(public_id)
        except ValueError:
            logger.warning("Invalid UUID format provided: %s", public_id)
            self._log.record_stage(trace, "resolve", "invalid_id")
            return None, ProcessingResult.failure(
                400, FailureKind.CONFIG_NOT_FOUND_OR_DISABLED, "Invalid UUID format"
            )

        config = await self._webhooks.get_by_uuid(public_id)
        if config is None:
            logger.warning("Webhook not found for UUID %s", public_id)
            self._log.record_stage(trace, "resolve", "not_found")
            return None, ProcessingResult.failure(
                404,
                FailureKind.CONFIG_NOT_FOUND_OR_DISABLED,
                f"Webhook endpoint with UUID '{public_id}' was not found",
            )
        trace.webhook_id = config.id

        auth_error = self._check_secret(config, metadata.secret_key)
        if auth_error is not None:
            logger.warning("Rejected request for protected webhook %s: %s", config.uuid, auth_error)
            self._log.record_stage(trace, "resolve", "unauthorized", auth_error)
            return config, ProcessingResult.failure(401, FailureKind.WEBHOOK_UNAUTHORIZED, auth_error)

        if config.is_disabled:
            logger.warning("Webhook %s is disabled, rejecting request", config.uuid)
            self._log.record_stage(trace, "resolve", "disabled")
            return config, ProcessingResult.failure(
                400, FailureKind.CONFIG_NOT_FOUND_OR_DISABLED, "Webhook is disabled"
            )

        self._log.record_stage(trace, "resolve", "ok", f"webhook_id={config.id}")
        return config, None

    @staticmethod
    def _check_secret(config: WebhookConfig, provided: str | None) -> str | None:
        if not config.is_protected:
            return None
        if not config.secret_key:
            return "Webhook is protected but has no secret key"
        if not provided:
            return "Webhook is protected, please provide a secret key"
        if not hmac.compare_digest(provided.encode(), config.secret_key.encode()):
            return "Invalid secret key provided"
        return None

    def _parse_and_validate(self, raw_payload: str | bytes, config: WebhookConfig) -> tuple[Any, list[str]]:
        size = len(raw_payload.encode() if isinstance(raw_payload, str) else raw_payload)
        if size > self._max_payload_bytes:
            return None, [f"Payload exceeds {self._max_payload_bytes} bytes"]
        try:
            payload = loads_payload(raw_payload)
        except ValueError as e:
            return None, [f"Payload is not valid JSON: {e}"]
        except RecursionError:
            return None, ["Payload nesting too deep"]
        if nesting_depth(payload) > self._max_payload_depth:
            return None, [f"Payload nesting exceeds {self._max_payload_depth} levels"]
        return payload, self._validator.validate(payload, config.payload_schema)

    def _notify(
        self,
        trace: RequestTrace,
        failure_type: str,
        error: str,
        config: WebhookConfig | None = None,
    ) -> None:
        if self._notifier is None:
            return
        name = config.name if config else str(trace.webhook_id or "unknown")
        self._notifier.notify(name, failure_type, error, trace.request_id)
