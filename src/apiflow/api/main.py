import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from apiflow import __version__
from apiflow.common.errors import DispatchError, ErrorCode, ErrorResponse, HTTP_STATUS
from apiflow.common.logger import get_logger, request_context

from .container import Container
from .routes import api_keys, connections, cron, dynamic, endpoints, health

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_SUPPORTED,
    401: ErrorCode.UNAUTHENTICATED,
    403: ErrorCode.FORBIDDEN,
}


def _error(code: ErrorCode, message: str, status_code: Optional[int] = None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code)
    return JSONResponse(status_code=status_code or HTTP_STATUS[code], content=body.model_dump(mode="json"))


async def _sweep_idle_adapters(container: Container) -> None:
    interval = container.settings.adapter_sweep_interval_sec
    max_idle = container.settings.adapter_idle_timeout_sec
    while True:
        await asyncio.sleep(interval)
        try:
            swept = await run_in_threadpool(container.registry.sweep_idle, max_idle)
            if swept:
                logger.info(f"Swept {len(swept)} idle adapters")
        except Exception as e:
            logger.error(f"Idle adapter sweep failed: {e}")


def create_app(container: Optional[Container] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.container = container or Container()
        sweeper = asyncio.create_task(_sweep_idle_adapters(app.state.container))
        try:
            yield
        finally:
            sweeper.cancel()
            app.state.container.shutdown()

    app = FastAPI(
        title="apiflow",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(dynamic.router)
    app.include_router(health.router, prefix="/api")
    app.include_router(endpoints.router, prefix="/api")
    app.include_router(connections.router, prefix="/api")
    app.include_router(api_keys.router, prefix="/api")
    app.include_router(cron.router, prefix="/api")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        with request_context(request_id):
            response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        return _error(exc.code, exc.get_safe_message())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(ErrorCode.VALIDATION_FAILED, "Request validation failed")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.INVALID_REQUEST)
        return _error(code, str(exc.detail), status_code=exc.status_code)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
