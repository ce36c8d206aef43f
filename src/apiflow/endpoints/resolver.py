from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from apiflow.common.errors import DispatchError, ErrorCode

from .models import Endpoint, Visibility, normalize_path

if TYPE_CHECKING:
    from apiflow.store.protocol import ConfigStore


class EndpointResolver:
    """Matches an inbound (path, method) against declared endpoints.

    Matching is exact on the canonical path, among active endpoints of the
    requested visibility class only, so the public and protected surfaces
    never see each other's endpoints.
    """

    def __init__(self, store: "ConfigStore"):
        self._store = store

    def resolve(
        self,
        path: str,
        method: str,
        requester_id: Optional[str],
        visibility: Visibility,
    ) -> Optional[Endpoint]:
        """Returns the matching endpoint, or None if nothing matches.

        Raises:
            DispatchError: FORBIDDEN when a protected endpoint matches but is
                owned by a different caller.
        """
        visibility = Visibility(visibility)
        endpoint = self._store.get_endpoint(normalize_path(path), method.upper(), visibility)
        if endpoint is None:
            return None
        if (
            visibility == Visibility.PROTECTED
            and endpoint.owner_id
            and endpoint.owner_id != requester_id
        ):
            raise DispatchError(ErrorCode.FORBIDDEN, "Endpoint belongs to another account")
        return endpoint
