from .models import AnalyticsEvent
from .sinks import AnalyticsSink, AuditLogSink, MemorySink
from .dispatcher import AnalyticsDispatcher

__all__ = ["AnalyticsEvent", "AnalyticsSink", "AuditLogSink", "MemorySink", "AnalyticsDispatcher"]
