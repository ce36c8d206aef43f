from enum import Enum
from typing import Optional


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Requests per billing month.
PLAN_LIMITS = {
    Plan.FREE: 10_000,
    Plan.PRO: 100_000,
    Plan.ENTERPRISE: 1_000_000,
}


def limit_for(plan: Optional[str]) -> int:
    """Monthly request ceiling for a plan name. Unknown plans get the free tier."""
    try:
        return PLAN_LIMITS[Plan((plan or Plan.FREE.value).lower())]
    except ValueError:
        return PLAN_LIMITS[Plan.FREE]
