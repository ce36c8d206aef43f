"""
Process logging: one stream handler on the root logger, plain or JSON.

Every record carries the id of the HTTP request being served (``-`` outside
a request). The id lives in a ContextVar, so it follows the request into
worker threads started with ``contextvars.copy_context()`` (as Starlette's
threadpool does).
"""
import contextvars
import json
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from apiflow.common.security import redact

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("apiflow_request_id", default=None)

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

# Driver loggers that are chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "pymongo", "urllib3", "google", "sqlalchemy.engine")

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "request_id",
    "taskName",
}


@contextmanager
def request_context(request_id: str) -> Iterator[str]:
    """Binds ``request_id`` to log records emitted inside the block."""
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line. Fields passed via ``extra=`` are redacted."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            entry["request_id"] = request_id
        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        if extras:
            entry.update(redact(extras))
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if getattr(handler, "_apiflow", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._apiflow = True
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
