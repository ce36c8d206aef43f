from .plans import PLAN_LIMITS, Plan, limit_for
from .usage import InMemoryUsageStore, RedisUsageStore, UsageDecision, UsageStore
from .enforcer import QuotaEnforcer

__all__ = [
    "PLAN_LIMITS",
    "Plan",
    "limit_for",
    "InMemoryUsageStore",
    "RedisUsageStore",
    "UsageDecision",
    "UsageStore",
    "QuotaEnforcer",
]
