import json
from datetime import UTC, datetime

import httpx
import pytest
from conftest import TelegramApi, add_webhook

from telehook.errors import FailureKind
from telehook.processing import WebhookProcessor
from telehook.request_log import RequestMetadata
from telehook.services import Services
from telehook.webhooks import DeliveryTarget


@pytest.fixture
def processor(services: Services) -> WebhookProcessor:
    return services.processor


async def _process(processor: WebhookProcessor, public_id: str, body: str = '{"event": "test"}', url: str = "/t"):
    return await processor.process_webhook(public_id, body.encode(), RequestMetadata(url=url, body=body))


async def _today_total(services: Services, webhook_id: int | None) -> int:
    stat = await services.stats.get_daily(datetime.now(UTC).date(), webhook_id)
    return stat.total_requests if stat else 0


async def test_end_to_end_delivery(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    webhook = await add_webhook(services, parse_mode="MarkdownV2")
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 200
    assert result.success is True
    assert result.body == {"message": "Message forwarded successfully"}
    assert telegram_api.calls == 1
    sent = json.loads(telegram_api.requests[0].content)
    assert sent["text"] == "Event: test"
    assert sent["parse_mode"] == "MarkdownV2"

    record = await services.log_store.get_by_request_id(result.request_id)
    assert [s["stage"] for s in record["stages"]] == ["resolve", "validate", "format", "deliver", "complete"]
    assert record["webhook_id"] == webhook.id
    assert await _today_total(services, webhook.id) == 1
    assert await _today_total(services, None) == 1


async def test_text_is_escaped_once(services: Services, processor: WebhookProcessor, telegram_api: TelegramApi) -> None:
    webhook = await add_webhook(services, template="Total: {{ total }}", parse_mode="MarkdownV2")
    await _process(processor, webhook.uuid, '{"total": 12.50}')
    assert json.loads(telegram_api.requests[0].content)["text"] == "Total: 12\\.50"


async def test_disabled_webhook_is_not_delivered(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    webhook = await add_webhook(services, is_disabled=True)
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 400
    assert result.failure_kind is FailureKind.CONFIG_NOT_FOUND_OR_DISABLED
    assert telegram_api.calls == 0
    record = await services.log_store.get_by_request_id(result.request_id)
    assert record["failure_kind"] == "config_not_found_or_disabled"


async def test_unknown_webhook(services: Services, processor: WebhookProcessor, telegram_api: TelegramApi) -> None:
    result = await _process(processor, "5f0c5e4e-0000-4000-8000-000000000000")

    assert result.status_code == 404
    assert result.failure_kind is FailureKind.CONFIG_NOT_FOUND_OR_DISABLED
    assert telegram_api.calls == 0
    record = await services.log_store.get_by_request_id(result.request_id)
    assert record["webhook_id"] is None
    assert await _today_total(services, None) == 1


async def test_invalid_uuid(processor: WebhookProcessor) -> None:
    result = await _process(processor, "not-a-uuid")
    assert result.status_code == 400
    assert result.body == {"message": "Invalid UUID format"}


async def test_uncompilable_template(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    webhook = await add_webhook(services, template="Event: {{ event ")
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 500
    assert result.failure_kind is FailureKind.TEMPLATE_RENDER_FAILURE
    assert result.body["message"] == "Message formatting failed"
    assert telegram_api.calls == 0
    record = await services.log_store.get_by_request_id(result.request_id)
    assert record["failure_kind"] == "template_render_failure"
    assert [s["stage"] for s in record["stages"]] == ["resolve", "validate", "format", "complete"]
    assert await _today_total(services, webhook.id) == 1


@pytest.mark.parametrize(
    ("body", "schema"),
    [
        ("not json", None),
        ('"just a string"', None),
        ('{"other": 1}', {"type": "object", "required": ["event"]}),
    ],
)
async def test_invalid_payload(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi, body: str, schema
) -> None:
    webhook = await add_webhook(services, payload_schema=schema)
    result = await _process(processor, webhook.uuid, body)

    assert result.status_code == 400
    assert result.failure_kind is FailureKind.PAYLOAD_INVALID
    assert result.body["details"]
    assert telegram_api.calls == 0
    stat = await services.stats.get_daily(datetime.now(UTC).date(), webhook.id)
    assert stat.validation_failures == 1
    assert stat.delivery_failures == 0


async def test_oversized_payload(services: Services, telegram_api: TelegramApi) -> None:
    webhook = await add_webhook(services)
    processor = WebhookProcessor(
        webhooks=services.webhooks,
        validator=services.processor._validator,
        formatter=services.processor._formatter,
        telegram=services.telegram,
        request_logger=services.processor._log,
        max_payload_bytes=10,
    )
    result = await _process(processor, webhook.uuid, json.dumps({"event": "x" * 50}))
    assert result.failure_kind is FailureKind.PAYLOAD_INVALID
    assert telegram_api.calls == 0


@pytest.mark.parametrize("depth", [65, 5000])
async def test_deeply_nested_payload_is_invalid(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi, depth: int
) -> None:
    webhook = await add_webhook(services)
    body = '{"event": ' + "[" * depth + "]" * depth + "}"
    result = await _process(processor, webhook.uuid, body)

    assert result.status_code == 400
    assert result.failure_kind is FailureKind.PAYLOAD_INVALID
    assert "nesting" in result.body["details"][0]
    assert telegram_api.calls == 0


async def test_nested_payload_within_limit_is_delivered(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    webhook = await add_webhook(services, template="Depth ok", parse_mode="None")
    body = '{"event": ' + "[" * 63 + "]" * 63 + "}"
    result = await _process(processor, webhook.uuid, body)
    assert result.status_code == 200
    assert telegram_api.calls == 1


@pytest.mark.parametrize(
    ("url", "headers", "status"),
    [
        ("/t", {}, 401),
        ("/t?secret_key=wrong", {}, 401),
        ("/t?secret_key=s3cret", {}, 200),
        ("/t", {"Authorization": "Bearer s3cret"}, 200),
    ],
)
async def test_protected_webhook(
    services: Services, processor: WebhookProcessor, url: str, headers: dict, status: int
) -> None:
    webhook = await add_webhook(services, is_protected=True, secret_key="s3cret")
    body = '{"event": "test"}'
    result = await processor.process_webhook(
        webhook.uuid, body.encode(), RequestMetadata(url=url, headers=headers, body=body)
    )
    assert result.status_code == status
    if status == 401:
        assert result.failure_kind is FailureKind.WEBHOOK_UNAUTHORIZED


async def test_delivery_timeout(services: Services, processor: WebhookProcessor, telegram_api: TelegramApi) -> None:
    def raise_timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    telegram_api.responder = raise_timeout
    webhook = await add_webhook(services)
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 504
    assert result.failure_kind is FailureKind.DELIVERY_TIMEOUT
    stat = await services.stats.get_daily(datetime.now(UTC).date(), webhook.id)
    assert stat.delivery_failures == 1


async def test_delivery_network_error(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    telegram_api.responder = refuse
    webhook = await add_webhook(services)
    result = await _process(processor, webhook.uuid)
    assert result.status_code == 502
    assert result.failure_kind is FailureKind.DELIVERY_NETWORK_ERROR


async def test_delivery_rejected(services: Services, processor: WebhookProcessor, telegram_api: TelegramApi) -> None:
    telegram_api.responder = lambda request: httpx.Response(403, json={"ok": False, "description": "Forbidden"})
    webhook = await add_webhook(services)
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 403
    assert result.failure_kind is FailureKind.DELIVERY_REJECTED
    assert result.body["message"] == "Telegram API error occurred"
    assert telegram_api.calls == 1


async def test_missing_bot_token_is_internal_fault(
    services: Services, processor: WebhookProcessor, telegram_api: TelegramApi
) -> None:
    webhook = await add_webhook(services, target=DeliveryTarget(bot_token="", chat_id="1"))
    result = await _process(processor, webhook.uuid)

    assert result.status_code == 500
    assert result.failure_kind is FailureKind.INTERNAL_FAULT
    assert result.body == {"message": "Internal server error"}
    assert telegram_api.calls == 0
    record = await services.log_store.get_by_request_id(result.request_id)
    assert record["failure_kind"] == "internal_fault"
    assert record["stages"][-1]["stage"] == "complete"
