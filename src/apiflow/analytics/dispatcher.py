from concurrent.futures import Future, ThreadPoolExecutor

from apiflow.common.logger import get_logger

from .models import AnalyticsEvent
from .sinks import AnalyticsSink

logger = get_logger(__name__)


class AnalyticsDispatcher:
    """Hands events to a sink on a background pool and never waits for it.

    A failing sink is logged and otherwise ignored; the response that
    produced the event has already been computed.
    """

    def __init__(self, sink: AnalyticsSink, max_workers: int = 2):
        self._sink = sink
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics")

    def record(self, event: AnalyticsEvent) -> None:
        try:
            future = self._executor.submit(self._sink.record, event)
        except RuntimeError as e:
            logger.warning(f"Analytics event dropped: {e}")
            return
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(f"Analytics sink failed: {type(exc).__name__}: {exc}")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
