import logging
import sys
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


_FORMATS = {
    "pretty": "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s",
    "plain": "%(levelname)s %(name)s %(message)s",
}


def configure_logging(log_level: str, log_format: str = "pretty") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=log_level.upper(),
        format=_FORMATS.get(log_format, _FORMATS["pretty"]),
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
    )
