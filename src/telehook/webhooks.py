import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import aiosqlite

_COLUMNS = (
    "id,uuid,name,bot_token,chat_id,topic_id,message_template,parse_mode,"
    "disable_web_page_preview,disable_notification,is_disabled,is_protected,"
    "secret_key,payload_schema,created_at"
)


@dataclass(frozen=True)
class DeliveryTarget:
    bot_token: str
    chat_id: str
    topic_id: str | None = None
    disable_web_page_preview: bool = True
    disable_notification: bool = False


@dataclass(frozen=True)
class WebhookConfig:
    id: int
    uuid: str
    name: str
    target: DeliveryTarget
    message_template: str
    parse_mode: str = "MarkdownV2"
    is_disabled: bool = False
    is_protected: bool = False
    secret_key: str | None = None
    payload_schema: dict[str, Any] | None = None
    created_at: str = ""


def _row_to_config(row: aiosqlite.Row) -> WebhookConfig:
    (
        id_,
        public_id,
        name,
        bot_token,
        chat_id,
        topic_id,
        template,
        parse_mode,
        no_preview,
        silent,
        disabled,
        protected,
        secret_key,
        schema,
        created_at,
    ) = row
    return WebhookConfig(
        id=id_,
        uuid=public_id,
        name=name,
        target=DeliveryTarget(bot_token, chat_id, topic_id, bool(no_preview), bool(silent)),
        message_template=template,
        parse_mode=parse_mode,
        is_disabled=bool(disabled),
        is_protected=bool(protected),
        secret_key=secret_key,
        payload_schema=json.loads(schema) if schema else None,
        created_at=created_at,
    )


class SQLiteWebhookStore:
    """Read side of the webhook configuration owned by the management API."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_by_uuid(self, public_id: str) -> WebhookConfig | None:
        async with self._conn.execute(f"SELECT {_COLUMNS} FROM webhooks WHERE uuid=?", (public_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_config(row) if row else None

    async def get_by_id(self, webhook_id: int) -> WebhookConfig | None:
        async with self._conn.execute(f"SELECT {_COLUMNS} FROM webhooks WHERE id=?", (webhook_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_config(row) if row else None

    async def list_ids(self) -> list[int]:
        async with self._conn.execute("SELECT id FROM webhooks ORDER BY id") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def insert(
        self,
        name: str,
        target: DeliveryTarget,
        message_template: str,
        parse_mode: str = "MarkdownV2",
        is_disabled: bool = False,
        is_protected: bool = False,
        secret_key: str | None = None,
        payload_schema: dict[str, Any] | None = None,
    ) -> WebhookConfig:
        public_id = str(uuid.uuid4())
        cursor = await self._conn.execute(
            "INSERT INTO webhooks(uuid,name,bot_token,chat_id,topic_id,message_template,parse_mode,"
            "disable_web_page_preview,disable_notification,is_disabled,is_protected,secret_key,"
            "payload_schema,created_at) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                public_id,
                name,
                target.bot_token,
                target.chat_id,
                target.topic_id,
                message_template,
                parse_mode,
                int(target.disable_web_page_preview),
                int(target.disable_notification),
                int(is_disabled),
                int(is_protected),
                secret_key,
                json.dumps(payload_schema) if payload_schema is not None else None,
                datetime.now(UTC).isoformat(),
            ),
        )
        await self._conn.commit()
        return await self.get_by_id(cursor.lastrowid)
