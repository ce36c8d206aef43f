from typing import Annotated

from fastapi import APIRouter, Depends

from apiflow.datasources import AdapterRegistry

from ..dependencies import get_registry
from ..models.response import SuccessResponse

router = APIRouter()

Registry = Annotated[AdapterRegistry, Depends(get_registry)]


@router.get("/health", response_model=SuccessResponse)
async def health_check():
    return SuccessResponse(message="ok")


@router.get("/ready", response_model=SuccessResponse)
async def readiness_check(registry: Registry):
    return SuccessResponse(data={"live_adapters": len(registry)}, message="ready")
