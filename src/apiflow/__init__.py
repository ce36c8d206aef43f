# apiflow package

from .adapter_sdk import Adapter, AdapterError, ConnectionConfig, Engine
from .dispatch import DispatchRequest, DispatchResult, RequestDispatcher
from .endpoints import Endpoint, EndpointFilter, Visibility
from .common.errors import DispatchError, ErrorCode

__version__ = "0.1.0"

__all__ = [
    "Adapter",
    "AdapterError",
    "ConnectionConfig",
    "Engine",
    "DispatchRequest",
    "DispatchResult",
    "RequestDispatcher",
    "Endpoint",
    "EndpointFilter",
    "Visibility",
    "DispatchError",
    "ErrorCode",
]
