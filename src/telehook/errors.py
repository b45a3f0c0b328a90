from enum import StrEnum


class FailureKind(StrEnum):
    CONFIG_NOT_FOUND_OR_DISABLED = "config_not_found_or_disabled"
    WEBHOOK_UNAUTHORIZED = "webhook_unauthorized"
    PAYLOAD_INVALID = "payload_invalid"
    TEMPLATE_RENDER_FAILURE = "template_render_failure"
    DELIVERY_NETWORK_ERROR = "delivery_network_error"
    DELIVERY_TIMEOUT = "delivery_timeout"
    DELIVERY_REJECTED = "delivery_rejected"
    INTERNAL_FAULT = "internal_fault"


class TeleHookError(Exception):
    pass


class TemplateCompileError(TeleHookError):
    """Raised when a template source cannot be parsed."""

    def __init__(self, webhook_id: int | None, messages: list[str]) -> None:
        self.webhook_id = webhook_id
        self.messages = messages
        super().__init__("; ".join(messages))


class TemplateNotFoundError(TeleHookError):
    def __init__(self, webhook_id: int) -> None:
        self.webhook_id = webhook_id
        super().__init__(f"Template not found for webhook {webhook_id}")


class DeliveryConfigurationError(TeleHookError):
    """Local misconfiguration of a delivery target; never retried."""
