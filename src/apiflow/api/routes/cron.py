from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from apiflow.quota import QuotaEnforcer

from ..dependencies import get_quota, require_cron_secret
from ..models.response import SuccessResponse

router = APIRouter()

Quota = Annotated[QuotaEnforcer, Depends(get_quota)]


@router.get(
    "/cron/reset-usage",
    response_model=SuccessResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def reset_usage(quota: Quota):
    """Billing-period reset, called by an external scheduler."""
    reset = await run_in_threadpool(quota.reset_all)
    return SuccessResponse(data={"reset": reset})
