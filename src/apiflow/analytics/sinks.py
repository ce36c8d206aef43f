import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import List, Protocol

from apiflow.common.security import redact

from .models import AnalyticsEvent


class AnalyticsSink(Protocol):
    def record(self, event: AnalyticsEvent) -> None:
        ...


class AuditLogSink:
    """Writes analytics events as JSON lines to a dedicated rotating file.

    The file is kept apart from application logs: the logger does not
    propagate to the root handler.
    """

    def __init__(self, log_path: str, logger_name: str = "apiflow.analytics"):
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        if not self.logger.handlers:
            directory = os.path.dirname(log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            # 10MB per file, max 5 backup files
            handler = RotatingFileHandler(
                log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

    def record(self, event: AnalyticsEvent) -> None:
        self.logger.info(json.dumps(redact(event.model_dump(mode="json"))))

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)


class MemorySink:
    """Keeps events in a list. Used by tests and the CLI dry runs."""

    def __init__(self):
        self.events: List[AnalyticsEvent] = []

    def record(self, event: AnalyticsEvent) -> None:
        self.events.append(event)
