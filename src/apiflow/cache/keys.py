import json
from typing import Mapping, Optional

from apiflow.endpoints.models import Visibility, normalize_path

CACHE_NAMESPACE = "api"
# Credentials never take part in a cache key.
EXCLUDED_PARAMS = frozenset({"key"})


def path_prefix(path: str) -> str:
    """Prefix shared by every cache entry of ``path`` on both surfaces."""
    return f"{CACHE_NAMESPACE}:{normalize_path(path)}:"


def build_cache_key(
    path: str,
    params: Mapping[str, str],
    visibility: Visibility,
    caller_id: Optional[str] = None,
) -> str:
    """Deterministic key for a GET response.

    Public entries are shared by every API key. Protected entries are scoped
    to the caller, since each caller only sees endpoints they own.
    """
    normalized = json.dumps(
        {k: v for k, v in sorted(params.items()) if k not in EXCLUDED_PARAMS},
        sort_keys=True,
        separators=(",", ":"),
    )
    if Visibility(visibility) == Visibility.PUBLIC:
        return f"{path_prefix(path)}public:{normalized}"
    return f"{path_prefix(path)}protected:{caller_id or ''}:{normalized}"
