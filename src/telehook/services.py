import asyncio
from dataclasses import dataclass
from datetime import timedelta

import aiosqlite
import httpx

from telehook.capture import CaptureSessionManager
from telehook.config import Settings
from telehook.formatting import MessageFormatter
from telehook.notifications import FailureNotifier
from telehook.processing import WebhookProcessor
from telehook.request_log import RequestLogger, SQLiteRequestLogStore
from telehook.stats import StatsAggregator
from telehook.telegram import TelegramClient
from telehook.templates import TemplateCache
from telehook.validation import SchemaValidator
from telehook.webhooks import SQLiteWebhookStore


@dataclass
class Services:
    settings: Settings
    webhooks: SQLiteWebhookStore
    templates: TemplateCache
    telegram: TelegramClient
    stats: StatsAggregator
    log_store: SQLiteRequestLogStore
    notifier: FailureNotifier
    processor: WebhookProcessor
    captures: CaptureSessionManager
    write_lock: asyncio.Lock


def build_services(db: aiosqlite.Connection, http: httpx.AsyncClient, settings: Settings) -> Services:
    webhooks = SQLiteWebhookStore(db)
    templates = TemplateCache(webhooks)
    telegram = TelegramClient(http, settings.telegram_api_base, settings.delivery_timeout_seconds)
    write_lock = asyncio.Lock()
    stats = StatsAggregator(db, write_lock)
    log_store = SQLiteRequestLogStore(db, write_lock)
    notifier = FailureNotifier(telegram, settings)
    processor = WebhookProcessor(
        webhooks=webhooks,
        validator=SchemaValidator(),
        formatter=MessageFormatter(templates),
        telegram=telegram,
        request_logger=RequestLogger(log_store, stats, persist=settings.enable_webhook_logging),
        notifier=notifier,
        max_payload_bytes=settings.max_payload_bytes,
        max_payload_depth=settings.max_payload_depth,
        development=settings.development,
    )
    captures = CaptureSessionManager(
        ttl=timedelta(seconds=settings.capture_ttl_seconds),
        retention=timedelta(seconds=settings.capture_retention_seconds),
        capture_url_format=settings.capture_url_format,
    )
    return Services(
        settings=settings,
        webhooks=webhooks,
        templates=templates,
        telegram=telegram,
        stats=stats,
        log_store=log_store,
        notifier=notifier,
        processor=processor,
        captures=captures,
        write_lock=write_lock,
    )
