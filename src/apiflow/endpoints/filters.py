from typing import Any, Iterable, List, Sequence

from apiflow.adapter_sdk import Record

from .models import EndpointFilter, FilterOperator

_MISSING = object()


def _compare(operator: FilterOperator, actual: Any, expected: Any) -> bool:
    if operator == FilterOperator.EQUALS:
        return actual == expected
    if operator == FilterOperator.NOT_EQUALS:
        return actual != expected
    if actual is _MISSING or actual is None:
        return False
    if operator == FilterOperator.CONTAINS:
        return str(expected) in str(actual)
    try:
        if operator == FilterOperator.GREATER_THAN:
            return actual > expected
        if operator == FilterOperator.LESS_THAN:
            return actual < expected
    except TypeError:
        # Values of unrelated types never satisfy an ordering filter.
        return False
    return False


def matches(record: Record, filters: Sequence[EndpointFilter]) -> bool:
    """True if ``record`` satisfies every filter, checked in declaration order."""
    return all(
        _compare(f.operator, record.get(f.field, _MISSING), f.value) for f in filters
    )


def apply_filters(records: Iterable[Record], filters: Sequence[EndpointFilter]) -> List[Record]:
    if not filters:
        return list(records)
    return [record for record in records if matches(record, filters)]
