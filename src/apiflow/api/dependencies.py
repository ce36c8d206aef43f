from typing import Optional

from fastapi import Depends, Header, Request

from apiflow.auth import ApiKeyService, CallerIdentity, bearer_token
from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.datasources import AdapterRegistry, ConnectionService
from apiflow.dispatch import RequestDispatcher
from apiflow.endpoints.service import EndpointService
from apiflow.quota import QuotaEnforcer

from .container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_dispatcher(container: Container = Depends(get_container)) -> RequestDispatcher:
    return container.dispatcher


def get_endpoint_service(container: Container = Depends(get_container)) -> EndpointService:
    return container.endpoints


def get_connection_service(container: Container = Depends(get_container)) -> ConnectionService:
    return container.connections


def get_api_key_service(container: Container = Depends(get_container)) -> ApiKeyService:
    return container.api_keys


def get_registry(container: Container = Depends(get_container)) -> AdapterRegistry:
    return container.registry


def get_quota(container: Container = Depends(get_container)) -> QuotaEnforcer:
    return container.quota


def get_caller(
    container: Container = Depends(get_container),
    authorization: Optional[str] = Header(default=None),
) -> CallerIdentity:
    """Session-authenticated caller for the management routes."""
    return container.session_verifier.verify(bearer_token(authorization))


def require_cron_secret(
    container: Container = Depends(get_container),
    authorization: Optional[str] = Header(default=None),
) -> None:
    secret = container.settings.cron_secret
    if not secret or bearer_token(authorization) != secret:
        raise DispatchError(ErrorCode.UNAUTHENTICATED, "Unauthorized")
