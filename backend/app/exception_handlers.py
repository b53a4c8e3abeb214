"""Exception handlers rendering every failure as `{success: false, error}`."""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .services import ServiceError

logger = logging.getLogger("app.api")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "-"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service error [%s] %s %s: %s", _request_id(request), request.method, request.url.path, exc.message)
    else:
        logger.info("request rejected [%s] %s %s -> %s: %s", _request_id(request), request.method,
                    request.url.path, exc.status_code, exc.message)
    content = {"success": False, "error": exc.message}
    content.update(jsonable_encoder(exc.extra))
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    first = details[0] if details else None
    message = f"invalid request: {'.'.join(first['loc'][1:]) or 'body'} {first['msg']}" if first else "invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": message, "details": details})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled exceptions with request context and answer 500."""
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        _request_id(request), request.method, request.url.path, exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal server error", "error_type": type(exc).__name__},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
