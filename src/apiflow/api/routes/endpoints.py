from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from apiflow.auth import CallerIdentity
from apiflow.endpoints.service import EndpointService

from ..dependencies import get_caller, get_endpoint_service
from ..models.response import SuccessResponse, VisibilityRequest

router = APIRouter()

EndpointSvc = Annotated[EndpointService, Depends(get_endpoint_service)]
Caller = Annotated[CallerIdentity, Depends(get_caller)]


@router.post("/endpoints/{endpoint_id}/visibility", response_model=SuccessResponse)
async def set_visibility(
    endpoint_id: str,
    payload: VisibilityRequest,
    caller: Caller,
    service: EndpointSvc,
):
    endpoint = await run_in_threadpool(
        service.set_visibility, endpoint_id, caller.caller_id, payload.is_public
    )
    return SuccessResponse(data=endpoint.model_dump(mode="json"))
