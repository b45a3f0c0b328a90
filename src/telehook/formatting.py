import logging
from dataclasses import dataclass, field
from typing import Any

from jinja2 import TemplateError

from telehook.converter import to_context
from telehook.errors import TemplateCompileError, TemplateNotFoundError
from telehook.escaping import ParseMode, escape_for_parse_mode
from telehook.templates import TemplateCache, compile_template
from telehook.webhooks import WebhookConfig

logger = logging.getLogger(__name__)


@dataclass
class FormattedMessage:
    success: bool
    text: str | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, text: str) -> "FormattedMessage":
        return cls(success=True, text=text)

    @classmethod
    def failure(cls, *errors: str) -> "FormattedMessage":
        return cls(success=False, errors=list(errors))


@dataclass
class RenderPreview:
    success: bool
    rendered: str = ""
    errors: list[str] | None = None


def _empty_message(webhook_name: str) -> str:
    return (
        "No data available to display, please check the provided template "
        f"and payload for webhook '{webhook_name}'."
    )


class MessageFormatter:
    def __init__(self, templates: TemplateCache) -> None:
        self._templates = templates

    async def format_message(self, config: WebhookConfig, payload: Any) -> FormattedMessage:
        """Render the webhook's template against ``payload`` and escape the result.

        Escaping covers the whole rendered text, template literals included,
        and happens exactly once here. Callers must not escape again.
        """
        logger.debug("Formatting message for webhook %s, parse mode %s", config.uuid, config.parse_mode)
        try:
            template = await self._templates.get_template(config.id)
        except (TemplateCompileError, TemplateNotFoundError) as e:
            logger.warning("Template unavailable for webhook %s: %s", config.uuid, e)
            messages = e.messages if isinstance(e, TemplateCompileError) else [str(e)]
            return FormattedMessage.failure(*(f"Failed to format message template: {m}" for m in messages))

        try:
            rendered = template.render(to_context(payload))
        except TemplateError as e:
            logger.warning("Template rendering failed for webhook %s: %s", config.uuid, e)
            return FormattedMessage.failure(f"Failed to format message template: {e.message or e}")
        except Exception as e:
            logger.exception("Unexpected error rendering template for webhook %s", config.uuid)
            return FormattedMessage.failure(f"Failed to format message template: {e}")

        rendered = rendered.replace("\\n", "\n")
        if not rendered.strip():
            logger.warning("Rendered message for webhook %s is empty, using placeholder", config.uuid)
            rendered = _empty_message(config.name)

        text = escape_for_parse_mode(rendered, ParseMode.parse(config.parse_mode))
        logger.debug("Formatted message for webhook %s, length %d", config.uuid, len(text))
        return FormattedMessage.ok(text)


def render_preview(source: str, sample: Any) -> RenderPreview:
    """Render an unsaved template against a sample payload, without escaping."""
    try:
        template = compile_template(source)
    except TemplateCompileError as e:
        logger.warning("Template parsing failed: %s", ", ".join(e.messages))
        return RenderPreview(success=False, errors=e.messages)
    try:
        rendered = template.render(to_context(sample))
    except Exception as e:
        logger.warning("Template preview failed: %s", e)
        return RenderPreview(success=False, errors=[str(e)])
    logger.info("Template rendered successfully, length %d", len(rendered))
    return RenderPreview(success=True, rendered=rendered)
