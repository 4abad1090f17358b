import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from docvault.api.deps import get_vector_store
from docvault.api.routes import (
    analysis_router,
    blob_router,
    catalog_router,
    health_router,
    metadata_router,
    rag_router,
)
from docvault.errors import DocVaultError
from docvault.logging import init_logging, request_id_var

logger = init_logging()

VECTOR_STORE_ENABLED = os.getenv("VECTOR_STORE_ENABLED", "true").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, cleanup on shutdown."""
    if VECTOR_STORE_ENABLED:
        try:
            get_vector_store().ensure_collection()
        except DocVaultError as e:
            # file management works without the vector store
            logger.error("startup_failed", extra={"error": e.message})
    logger.info("startup_complete")

    yield

    logger.info("shutdown_complete")


app = FastAPI(title="DocVault API", lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


@app.exception_handler(DocVaultError)
async def docvault_error_handler(request: Request, exc: DocVaultError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", extra={
        "path": request.url.path,
        "status": exc.status_code,
        "error": exc.error,
        "reason": exc.message
    })
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(blob_router)
app.include_router(catalog_router)
app.include_router(metadata_router)
app.include_router(analysis_router)
app.include_router(rag_router)
app.include_router(health_router)


@app.get("/healthz")
def healthz():
    return {"ok": True}


# Prometheus /metrics
Instrumentator().instrument(app).expose(app, endpoint="/metrics")
