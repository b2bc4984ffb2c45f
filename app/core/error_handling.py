"""Exception handlers translating domain errors into JSON responses."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import ExternalSyncFailure, TaskManagementError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def _task_management_error_handler(request: Request, exc: TaskManagementError) -> JSONResponse:
    logger.info(
        "request.rejected",
        extra={"path": request.url.path, "status_code": exc.status_code, "code": exc.code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


async def _external_sync_failure_handler(request: Request, exc: ExternalSyncFailure) -> JSONResponse:
    # Only explicit sync endpoints let this escape; task mutations swallow it
    logger.warning("calendar.request.failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=502,
        content={"detail": f"Calendar service error: {exc}", "code": "calendar_unavailable"},
    )


def install_error_handling(app: FastAPI) -> None:
    app.add_exception_handler(TaskManagementError, _task_management_error_handler)
    app.add_exception_handler(ExternalSyncFailure, _external_sync_failure_handler)
