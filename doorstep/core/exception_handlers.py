import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from doorstep.core.errors import (
    BookingNotFound,
    BookingRuleError,
    ConflictError,
    ConnectionLimitExceeded,
)
from doorstep.schemas.response import _rid

log = logging.getLogger(__name__)


def _error_body(code: str, message, **extra):
    error = {"code": code, "message": message}
    error.update(extra)
    return {"success": False, "error": error, "request_id": _rid()}


# ----------- Exception Handlers (called by FastAPI) -----------

def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 404, 400)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", exc.detail),
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles Pydantic validation errors (422 Unprocessable Entity)."""
    body = _error_body("validation_error", "Invalid input data", details=jsonable_errors(exc))
    return JSONResponse(status_code=422, content=body)


def jsonable_errors(exc: RequestValidationError):
    # ctx may carry exception instances that are not JSON serializable
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def conflict_exception_handler(request: Request, exc: ConflictError):
    """Invalid or stale booking transition (409). The client should refetch."""
    body = _error_body(
        "conflict",
        str(exc),
        current_status=exc.current,
        requested=exc.requested,
    )
    return JSONResponse(status_code=409, content=body)


def not_found_exception_handler(request: Request, exc: BookingNotFound):
    return JSONResponse(status_code=404, content=_error_body("not_found", str(exc)))


def rule_exception_handler(request: Request, exc: BookingRuleError):
    return JSONResponse(status_code=400, content=_error_body("rule_violation", str(exc)))


def connection_limit_handler(request: Request, exc: ConnectionLimitExceeded):
    """SSE registration refused; clients fall back to polling."""
    return JSONResponse(
        status_code=503,
        content=_error_body("connection_limit", str(exc)),
        headers={"Retry-After": "30"},
    )


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    log.error("Unhandled exception on path: %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("server_error", "Internal Server Error"))


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConflictError, conflict_exception_handler)
    app.add_exception_handler(BookingNotFound, not_found_exception_handler)
    app.add_exception_handler(BookingRuleError, rule_exception_handler)
    app.add_exception_handler(ConnectionLimitExceeded, connection_limit_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    return app
