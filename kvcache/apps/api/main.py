from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from kvcache.apps.api.routers import router as cache_router
from kvcache.core.bootstrap import CacheRuntime
from kvcache.core.logging import configure_logging
from kvcache.core.result import DurableStoreError, InvalidCacheRequest
from kvcache.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    runtime: Optional[CacheRuntime] = None,
) -> FastAPI:
    settings = settings or get_settings()
    runtime = runtime or CacheRuntime(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        await runtime.start()
        try:
            yield
        finally:
            await runtime.shutdown()

    app = FastAPI(title="kvcache", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(cache_router)

    @app.exception_handler(DurableStoreError)
    async def _durable_store_error(request: Request, exc: DurableStoreError) -> JSONResponse:
        logger.error("Durable store failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Cache storage unavailable"},
        )

    @app.exception_handler(InvalidCacheRequest)
    async def _invalid_request(request: Request, exc: InvalidCacheRequest) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.get("/health")
    async def health():
        report = await runtime.health()
        code = status.HTTP_200_OK if report["ok"] else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=report)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        if not settings.metrics_enabled:
            raise HTTPException(status_code=404)
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
