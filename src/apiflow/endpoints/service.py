from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from apiflow.cache import path_prefix
from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.common.logger import get_logger

from .models import Endpoint, Visibility

if TYPE_CHECKING:
    from apiflow.cache import CacheBackend
    from apiflow.store.protocol import ConfigStore

logger = get_logger(__name__)


class EndpointService:
    """Owner-only management operations on declared endpoints."""

    def __init__(self, store: "ConfigStore", cache: Optional["CacheBackend"] = None):
        self._store = store
        self._cache = cache

    def set_visibility(self, endpoint_id: str, requester_id: str, is_public: bool) -> Endpoint:
        """Moves an endpoint between the public and protected surfaces.

        Raises:
            DispatchError: NOT_FOUND for an unknown id, FORBIDDEN if the
                requester does not own it, CONFLICT if the target surface
                already has an active endpoint at the same path and method.
        """
        endpoint = self._store.get_endpoint_by_id(endpoint_id)
        if endpoint is None:
            raise DispatchError(ErrorCode.NOT_FOUND, "Endpoint not found")
        if endpoint.owner_id != requester_id:
            raise DispatchError(ErrorCode.FORBIDDEN, "You can only modify your own endpoints")
        if endpoint.is_public == is_public:
            return endpoint

        target = Visibility.PUBLIC if is_public else Visibility.PROTECTED
        occupant = self._store.get_endpoint(endpoint.path, endpoint.method.value, target)
        if occupant is not None and occupant.id != endpoint.id:
            raise DispatchError(
                ErrorCode.CONFLICT,
                f"Another {target.value} endpoint already serves {endpoint.method.value} {endpoint.path}",
            )

        updated = endpoint.model_copy(
            update={"is_public": is_public, "updated_at": datetime.now(timezone.utc)}
        )
        self._store.save_endpoint(updated)
        self._invalidate(updated.path)
        logger.info(f"Endpoint {endpoint_id} is now {target.value}")
        return updated

    def _invalidate(self, path: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.invalidate_prefix(path_prefix(path))
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {path}: {e}")
