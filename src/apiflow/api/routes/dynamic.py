import json
from typing import Annotated, Any, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apiflow.common.logger import current_request_id
from apiflow.dispatch import DispatchRequest, RequestDispatcher
from apiflow.endpoints.models import Visibility

from ..dependencies import get_dispatcher

router = APIRouter()

Dispatcher = Annotated[RequestDispatcher, Depends(get_dispatcher)]

# Methods outside the CRUD set are routed too so the dispatcher can answer 405.
ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


async def _read_body(request: Request) -> Tuple[Any, Optional[str]]:
    """Returns (parsed body, parse error). The dispatcher rejects a bad body
    only once the caller is authenticated."""
    if request.method in ("GET", "HEAD", "OPTIONS"):
        return None, None
    raw = await request.body()
    if not raw.strip():
        return None, None
    try:
        return json.loads(raw), None
    except ValueError:
        return None, "Request body must be valid JSON"


async def _dispatch(request: Request, path: str, visibility: Visibility, dispatcher: RequestDispatcher):
    body, body_error = await _read_body(request)
    dispatch_request = DispatchRequest(
        method=request.method,
        path=path,
        visibility=visibility,
        query=dict(request.query_params),
        body=body,
        body_error=body_error,
        authorization=request.headers.get("authorization"),
        request_id=current_request_id() or request.headers.get("x-request-id"),
    )
    result = await run_in_threadpool(dispatcher.dispatch, dispatch_request)
    return JSONResponse(status_code=result.status, content=result.body)


@router.api_route("/dynamic/{path:path}", methods=ROUTED_METHODS)
async def dynamic_endpoint(path: str, request: Request, dispatcher: Dispatcher):
    """Protected surface, authenticated by session token."""
    return await _dispatch(request, path, Visibility.PROTECTED, dispatcher)


@router.api_route("/public/{path:path}", methods=ROUTED_METHODS)
async def public_endpoint(path: str, request: Request, dispatcher: Dispatcher):
    """Public surface, authenticated by API key."""
    return await _dispatch(request, path, Visibility.PUBLIC, dispatcher)
