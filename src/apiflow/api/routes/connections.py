from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from apiflow.auth import CallerIdentity
from apiflow.datasources import ConnectionService

from ..dependencies import get_caller, get_connection_service
from ..models.response import SuccessResponse

router = APIRouter()

ConnectionSvc = Annotated[ConnectionService, Depends(get_connection_service)]
Caller = Annotated[CallerIdentity, Depends(get_caller)]


@router.delete("/connections/{connection_id}", response_model=SuccessResponse)
async def delete_connection(
    connection_id: str,
    caller: Caller,
    service: ConnectionSvc,
):
    await run_in_threadpool(service.delete_connection, connection_id, caller.caller_id)
    return SuccessResponse(message=f"Connection {connection_id} deleted")
