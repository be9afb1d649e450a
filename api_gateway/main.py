"""
FastAPI application.

Inbound HTTP surface over episode assembly and generation batches.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.errors import ErrorKind, PipelineError
from shared.logging import get_logger
from api_gateway.dependencies import get_assembler, get_registry
from api_gateway.routes.analytics import router as analytics_router
from api_gateway.routes.batches import router as batches_router
from api_gateway.routes.episodes import router as episodes_router

logger = get_logger("api_gateway.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only close what was actually built during the app's lifetime
    if get_registry.cache_info().currsize:
        await get_registry().aclose()
    if get_assembler.cache_info().currsize:
        await get_assembler().audio.aclose()
    logger.info("API gateway stopped")


app = FastAPI(title="Episode Video Orchestrator", lifespan=lifespan)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    code = status.HTTP_503_SERVICE_UNAVAILABLE if exc.kind == ErrorKind.TRANSIENT else status.HTTP_400_BAD_REQUEST
    logger.warning(f"Request failed: {exc.message}", extra={"path": request.url.path, "kind": exc.kind})
    return JSONResponse(status_code=code, content=exc.to_dict())


@app.get("/health", tags=["root"])
async def health():
    return {"status": "ok"}


app.include_router(episodes_router, prefix="/api/v1", tags=["episodes"])
app.include_router(batches_router, prefix="/api/v1", tags=["batches"])
app.include_router(analytics_router, prefix="/api/v1", tags=["analytics"])
