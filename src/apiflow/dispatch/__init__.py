from .dispatcher import RequestDispatcher
from .models import DispatchRequest, DispatchResult, DispatchState

__all__ = ["RequestDispatcher", "DispatchRequest", "DispatchResult", "DispatchState"]
