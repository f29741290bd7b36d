import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from synchub.core.config import settings
from synchub.core.errors import (
    AuthError, NotFoundError, QueueUnavailableError, SyncError, UpstreamError, ValidationError,
)
from synchub.core.logging import configure_logging
from synchub.core.celery_app import celery_app  # noqa: F401  API 进程投递任务也要用这份配置
from synchub.api.v1 import api_v1
from synchub.db.session import dispose_engine
from synchub.services import factory
from synchub.services.job_queue import LocalWorkerPool

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---- 领域异常 → HTTP 状态码 ----
_STATUS_BY_ERROR = (
    (AuthError, 401),
    (ValidationError, 422),
    (NotFoundError, 404),
    (QueueUnavailableError, 503),
    (UpstreamError, 502),
)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.warning("api.error path=%s status=%s err=%s", request.url.path, status_code, exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
        headers=headers,
    )


@app.on_event("shutdown")
def _shutdown() -> None:
    if settings.SYNC_TASKS_INLINE:
        dispatcher = factory.get_job_queue().dispatcher
        if isinstance(dispatcher, LocalWorkerPool):
            dispatcher.shutdown(wait=False)
    dispose_engine()


app.include_router(api_v1, prefix=settings.API_PREFIX)


@app.get("/")
def root():
    return {
        "app": settings.PROJECT_NAME,
        "env": settings.ENVIRONMENT,
        "ok": True,
    }
