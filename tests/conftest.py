from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from telehook.app import create_app
from telehook.config import Settings
from telehook.database import open_db
from telehook.services import Services, build_services
from telehook.webhooks import DeliveryTarget, WebhookConfig

TARGET = DeliveryTarget(bot_token="123:ABC", chat_id="-100200300")


class TelegramApi:
    """Stand-in for api.telegram.org that records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json={"ok": True, "result": {"message_id": 1}}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
async def db(tmp_path: pytest.TempPathFactory):
    conn = await open_db(str(tmp_path / "test.db"))
    yield conn
    await conn.close()


@pytest.fixture
def settings(tmp_path: pytest.TempPathFactory) -> Settings:
    return Settings(db_path=str(tmp_path / "test.db"), telegram_api_base="https://telegram.test")


@pytest.fixture
def telegram_api() -> TelegramApi:
    return TelegramApi()


@pytest.fixture
async def http(telegram_api: TelegramApi):
    async with httpx.AsyncClient(transport=httpx.MockTransport(telegram_api.handler)) as client:
        yield client


@pytest.fixture
async def services(db, http: httpx.AsyncClient, settings: Settings) -> Services:
    return build_services(db, http, settings)


@pytest.fixture
async def client(services: Services, settings: Settings) -> AsyncClient:
    app = create_app(settings)
    app.state.services = services
    app.state.ready = True
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def add_webhook(services: Services, template: str = "Event: {{ event }}", **kwargs) -> WebhookConfig:
    kwargs.setdefault("target", TARGET)
    return await services.webhooks.insert(name=kwargs.pop("name", "orders"), message_template=template, **kwargs)


async def set_template(db, webhook_id: int, template: str) -> None:
    """Edit a template the way the management side does, outside the cache."""
    await db.execute("UPDATE webhooks SET message_template=? WHERE id=?", (template, webhook_id))
    await db.commit()
