from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.quota import InMemoryUsageStore, QuotaEnforcer, RedisUsageStore, limit_for


@pytest.mark.parametrize(
    "plan, limit",
    [(None, 10_000), ("free", 10_000), ("PRO", 100_000), ("enterprise", 1_000_000), ("gold", 10_000)],
)
def test_plan_limits(plan, limit):
    assert limit_for(plan) == limit


def test_concurrent_increments_never_pass_the_limit():
    # Arrange
    usage = InMemoryUsageStore()

    # Act
    with ThreadPoolExecutor(max_workers=16) as pool:
        decisions = list(pool.map(lambda _: usage.try_increment("u1", 10), range(50)))

    # Assert
    assert sum(d.allowed for d in decisions) == 10
    assert usage.get_usage("u1") == 10


def test_enforcer_rejects_at_limit_without_counting():
    # Arrange
    usage = InMemoryUsageStore()
    enforcer = QuotaEnforcer(usage, lambda caller_id: "free")
    usage.set_usage("u1", 9_999)

    # Act
    allowed = enforcer.charge("u1")
    with pytest.raises(DispatchError) as exc_info:
        enforcer.charge("u1")

    # Assert
    assert allowed.count == 10_000
    assert exc_info.value.code == ErrorCode.QUOTA_EXCEEDED
    assert exc_info.value.status_code == 429
    assert exc_info.value.details == {"count": 10_000, "limit": 10_000}
    assert usage.get_usage("u1") == 10_000


def test_enforcer_uses_caller_plan():
    plans = {"u1": "pro"}
    enforcer = QuotaEnforcer(InMemoryUsageStore(), plans.get)
    assert enforcer.limit_for("u1") == 100_000
    assert enforcer.limit_for("u2") == 10_000


def test_reset_all_clears_counters():
    usage = InMemoryUsageStore()
    usage.try_increment("u1", 5)
    usage.try_increment("u2", 5)
    assert QuotaEnforcer(usage, lambda _: None).reset_all() == 2
    assert usage.get_usage("u1") == 0


def test_redis_usage_runs_atomic_script():
    # Arrange
    client = MagicMock()
    script = client.register_script.return_value
    script.side_effect = [[1, 3], [0, 10]]
    usage = RedisUsageStore(client)

    # Act
    allowed = usage.try_increment("u1", 10)
    denied = usage.try_increment("u1", 10)

    # Assert
    script.assert_called_with(keys=["usage:u1"], args=[10])
    assert (allowed.allowed, allowed.count) == (True, 3)
    assert (denied.allowed, denied.count) == (False, 10)


def test_redis_usage_reset_scans_usage_keys():
    client = MagicMock()
    client.scan_iter.return_value = iter(["usage:u1", "usage:u2"])
    client.delete.return_value = 1
    assert RedisUsageStore(client).reset_all() == 2
    client.scan_iter.assert_called_once_with(match="usage:*", count=500)
