"""HTTP entry point.

Usage:
  TICKET_SECRET=... REDIS_URL=redis://localhost:6379/0 uvicorn pdfjobs.main:app --host 0.0.0.0 --port 8000
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from . import redis_helper
from .api import downloads as downloads_api
from .api import jobs as jobs_api
from .api import render as render_api
from .api import tickets as tickets_api
from .config import settings
from .errors import PdfServiceError
from .logging_config import get_logger, setup_logging
from .metrics import error_count, metrics_response, request_latency_seconds

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings.validate_startup()
    logger.info("service_started", environment=settings.environment)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(tickets_api.router)
app.include_router(jobs_api.router)
app.include_router(downloads_api.router)
app.include_router(render_api.router)


@app.exception_handler(PdfServiceError)
async def service_error_handler(request: Request, exc: PdfServiceError):
    if exc.status_code >= 500:
        error_count.inc()
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.details})


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    try:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        return response
    finally:
        request_latency_seconds.observe(time.time() - start)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/readyz")
async def readyz():
    try:
        redis_client = await redis_helper.get_redis()
        await redis_client.ping()
    except RedisError as exc:
        return JSONResponse(status_code=503, content={"ready": False, "error": str(exc)})
    return {"ready": True}


@app.get("/metrics")
async def metrics():
    return metrics_response()
