"""
Resilience Module: circuit breakers around engine connects.

The Adapter Registry keeps one breaker per connection id around
``Adapter.connect()``. After ``fail_max`` consecutive connect failures the
breaker opens and further attempts fail immediately until ``reset_timeout``
has passed, then a single trial connect is let through.
"""
from typing import Callable, List, Optional, Union

import pybreaker

from apiflow.adapter_sdk import AdapterError
from apiflow.common.logger import get_logger

logger = get_logger("resilience")

Exclusion = Union[type, Callable[[BaseException], bool]]


def is_soft_failure(exc: BaseException) -> bool:
    """Adapter errors that leave the handle usable never trip a breaker."""
    return isinstance(exc, AdapterError) and not exc.fatal


class ConnectBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs breaker transitions for a connection."""

    def state_change(self, cb, old_state, new_state):
        old_name = old_state.name if old_state is not None else "none"
        logger.warning(f"Connect breaker '{cb.name}' {old_name} -> {new_state.name}")

    def failure(self, cb, exc):
        logger.error(
            f"Connect breaker '{cb.name}' failure {cb.fail_counter}/{cb.fail_max}: {type(exc).__name__}"
        )


def create_breaker(
    name: str,
    fail_max: int = 3,
    reset_timeout: int = 30,
    exclude: Optional[List[Exclusion]] = None,
) -> pybreaker.CircuitBreaker:
    """Builds a breaker that ignores soft adapter failures."""
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[ConnectBreakerListener()],
        exclude=[is_soft_failure, *(exclude or [])],
    )
