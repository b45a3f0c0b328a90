import asyncio
import logging
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from jinja2 import Template, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from telehook.errors import TemplateCompileError, TemplateNotFoundError
from telehook.webhooks import SQLiteWebhookStore

logger = logging.getLogger(__name__)


class DecimalSandboxedEnvironment(SandboxedEnvironment):
    """Sandbox where payload decimals mix with float literals in arithmetic."""

    intercepted_binops = frozenset(["+", "-", "*", "/", "//", "%", "**"])

    def call_binop(self, context: Any, operator: str, left: Any, right: Any) -> Any:
        if isinstance(left, Decimal) and isinstance(right, float):
            right = Decimal(repr(right))
        elif isinstance(right, Decimal) and isinstance(left, float):
            left = Decimal(repr(left))
        return super().call_binop(context, operator, left, right)


_jinja_env = DecimalSandboxedEnvironment(autoescape=False, keep_trailing_newline=True)


def compile_template(source: str, webhook_id: int | None = None) -> Template:
    try:
        return _jinja_env.from_string(source)
    except TemplateSyntaxError as e:
        location = f"line {e.lineno}: " if e.lineno else ""
        raise TemplateCompileError(webhook_id, [f"{location}{e.message}"]) from e


class TemplateCache:
    """Compiled templates keyed by webhook id.

    Readers only ever see a complete snapshot: writers build a new mapping and
    swap the reference, so there is no in-place mutation to observe.
    """

    def __init__(self, webhooks: SQLiteWebhookStore) -> None:
        self._webhooks = webhooks
        self._snapshot: MappingProxyType[int, Template] = MappingProxyType({})
        self._write_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, webhook_id: int) -> bool:
        return webhook_id in self._snapshot

    async def get_template(self, webhook_id: int) -> Template:
        template = self._snapshot.get(webhook_id)
        if template is not None:
            return template
        return await self._compile_and_store(webhook_id)

    async def refresh_template(self, webhook_id: int) -> None:
        try:
            await self._compile_and_store(webhook_id)
            logger.debug("Refreshed template for webhook %s", webhook_id)
        except (TemplateCompileError, TemplateNotFoundError) as e:
            await self.invalidate(webhook_id)
            logger.warning("Template for webhook %s not refreshed: %s", webhook_id, e)

    async def invalidate(self, webhook_id: int) -> None:
        async with self._write_lock:
            if webhook_id in self._snapshot:
                updated = dict(self._snapshot)
                del updated[webhook_id]
                self._snapshot = MappingProxyType(updated)

    async def warm_up(self) -> None:
        logger.info("Compiling webhook templates")
        for webhook_id in await self._webhooks.list_ids():
            try:
                await self._compile_and_store(webhook_id)
            except TemplateCompileError as e:
                logger.error("Failed to compile template for webhook %s: %s", webhook_id, e)
        logger.info("Compiled %d templates", len(self))

    async def _compile_and_store(self, webhook_id: int) -> Template:
        config = await self._webhooks.get_by_id(webhook_id)
        if config is None:
            raise TemplateNotFoundError(webhook_id)
        template = compile_template(config.message_template, webhook_id)
        async with self._write_lock:
            updated = dict(self._snapshot)
            updated[webhook_id] = template
            self._snapshot = MappingProxyType(updated)
        return template
