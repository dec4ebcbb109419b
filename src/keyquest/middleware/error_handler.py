"""Global error handlers: every error leaves as JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keyquest.progression.results import ConcurrencyError, ValidationError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        # Rejected input is not echoed: it may hold NaN or Infinity, which JSON cannot carry.
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": errors},
        )

    @app.exception_handler(ValidationError)
    async def domain_validation_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        """Input the services rejected before touching any state."""
        return JSONResponse(
            status_code=422,
            content={"detail": {"reason": "validation_error", "message": str(exc)}},
        )

    @app.exception_handler(ConcurrencyError)
    async def concurrency_handler(request: Request, exc: ConcurrencyError) -> JSONResponse:
        """Retries exhausted under contention; the client may try again."""
        logger.warning("concurrency_exhausted", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"detail": {"reason": "concurrency_conflict", "message": str(exc)}},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
