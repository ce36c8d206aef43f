from .models import (
    Endpoint,
    EndpointFilter,
    FilterOperator,
    HttpMethod,
    Visibility,
    normalize_path,
)
from .filters import apply_filters, matches

__all__ = [
    "Endpoint",
    "EndpointFilter",
    "FilterOperator",
    "HttpMethod",
    "Visibility",
    "normalize_path",
    "apply_filters",
    "matches",
]
