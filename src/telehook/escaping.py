import html
import re
from collections.abc import Callable
from enum import StrEnum


class ParseMode(StrEnum):
    MARKDOWN_V2 = "MarkdownV2"
    MARKDOWN = "Markdown"
    HTML = "HTML"
    NONE = "None"

    @classmethod
    def parse(cls, value: str | None) -> "ParseMode":
        if not value:
            return cls.NONE
        lowered = value.strip().lower()
        for mode in cls:
            if mode.value.lower() == lowered:
                return mode
        return cls.NONE

    @property
    def api_value(self) -> str | None:
        return None if self is ParseMode.NONE else self.value


MARKDOWN_V2_RESERVED = "_*[]()~`>#+-=|{}.!"
MARKDOWN_RESERVED = "_*`[]"
HTML_RESERVED = "&<>"

_MARKDOWN_V2_RE = re.compile("([" + re.escape(MARKDOWN_V2_RESERVED) + "])")
_MARKDOWN_RE = re.compile("([" + re.escape(MARKDOWN_RESERVED) + "])")


def escape_markdown_v2(text: str) -> str:
    return _MARKDOWN_V2_RE.sub(r"\\\1", text)


def escape_markdown(text: str) -> str:
    return _MARKDOWN_RE.sub(r"\\\1", text)


def escape_html(text: str) -> str:
    return html.escape(text, quote=False)


def _passthrough(text: str) -> str:
    return text


_ESCAPERS: dict[ParseMode, Callable[[str], str]] = {
    ParseMode.MARKDOWN_V2: escape_markdown_v2,
    ParseMode.MARKDOWN: escape_markdown,
    ParseMode.HTML: escape_html,
    ParseMode.NONE: _passthrough,
}


def escape_for_parse_mode(text: str, parse_mode: ParseMode | str | None) -> str:
    if not text:
        return text
    mode = parse_mode if isinstance(parse_mode, ParseMode) else ParseMode.parse(parse_mode)
    return _ESCAPERS[mode](text)
