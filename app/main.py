"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from app.config import get_settings
from app.domain.errors import (
    SchedulingError, RecurrenceValidationError, NotFoundError, SessionConflictError,
)
from app.infrastructure.db.session import check_db_connection
from app.api.v1 import schedules, sessions, integrity

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches everything the exception handlers did not, including sync routes"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def _status_for(exc: SchedulingError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, SessionConflictError):
        return 409
    if isinstance(exc, RecurrenceValidationError):
        return 400
    return 422


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})


async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Banco de dados indisponível"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.INTEGRITY_AUDIT_ENABLED:
        from app.application.scheduler import start_scheduler, shutdown_scheduler
        start_scheduler()
        try:
            yield
        finally:
            shutdown_scheduler()
    else:
        yield


def create_app() -> FastAPI:
    """
    Application factory - builds and wires the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Agenda Recorrente",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)

    app.add_middleware(ErrorLoggingMiddleware)

    # Middleware
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    app.include_router(schedules.router)
    app.include_router(sessions.router)
    app.include_router(integrity.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
