from typing import Callable, Optional

from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.common.logger import get_logger

from .plans import limit_for
from .usage import UsageDecision, UsageStore

logger = get_logger(__name__)

PlanLookup = Callable[[str], Optional[str]]


class QuotaEnforcer:
    """Charges one request against the caller's monthly plan allowance."""

    def __init__(self, usage: UsageStore, plan_lookup: PlanLookup):
        self._usage = usage
        self._plan_lookup = plan_lookup

    def limit_for(self, caller_id: str) -> int:
        return limit_for(self._plan_lookup(caller_id))

    def charge(self, caller_id: str) -> UsageDecision:
        """Counts one request for ``caller_id``.

        Raises:
            DispatchError: QUOTA_EXCEEDED when the caller is already at the limit.
                The counter is left unchanged in that case.
        """
        decision = self._usage.try_increment(caller_id, self.limit_for(caller_id))
        if not decision.allowed:
            logger.info(f"Quota exceeded for {caller_id}: {decision.count}/{decision.limit}")
            raise DispatchError(
                ErrorCode.QUOTA_EXCEEDED,
                details={"count": decision.count, "limit": decision.limit},
            )
        return decision

    def reset_all(self) -> int:
        reset = self._usage.reset_all()
        logger.info(f"Usage counters reset for {reset} callers")
        return reset
