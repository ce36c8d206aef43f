from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from apiflow.auth import ApiKeyService, CallerIdentity

from ..dependencies import get_api_key_service, get_caller
from ..models.response import ApiKeyCreateRequest, ApiKeySummary, SuccessResponse

router = APIRouter()

ApiKeySvc = Annotated[ApiKeyService, Depends(get_api_key_service)]
Caller = Annotated[CallerIdentity, Depends(get_caller)]


@router.get("/api-keys", response_model=SuccessResponse)
async def list_api_keys(caller: Caller, service: ApiKeySvc):
    records = await run_in_threadpool(service.list, caller.caller_id)
    return SuccessResponse(data=[ApiKeySummary.from_record(r).model_dump(mode="json") for r in records])


@router.post("/api-keys", response_model=SuccessResponse, status_code=201)
async def generate_api_key(payload: ApiKeyCreateRequest, caller: Caller, service: ApiKeySvc):
    key, record = await run_in_threadpool(service.generate, caller.caller_id, payload.name)
    data = ApiKeySummary.from_record(record).model_dump(mode="json")
    data["key"] = key
    return SuccessResponse(data=data, message="Store this key now; it will not be shown again")


@router.delete("/api-keys/{key_id}", response_model=SuccessResponse)
async def revoke_api_key(key_id: str, caller: Caller, service: ApiKeySvc):
    record = await run_in_threadpool(service.revoke, key_id, caller.caller_id)
    return SuccessResponse(
        data=ApiKeySummary.from_record(record).model_dump(mode="json"),
        message="API key revoked",
    )
