from typing import Any, Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi.errors import RateLimitExceeded
from gateway.core.errors import GatewayError
import logging

logger = logging.getLogger(__name__)


def success(result: Any = None, message: Optional[str] = None) -> dict:
    """Build the uniform success envelope"""
    body = {"status": status.HTTP_200_OK}
    if message is not None:
        body["message"] = message
    if result is not None:
        body["result"] = result
    return body


def error_body(status_code: int, message: str) -> dict:
    return {"status": status_code, "message": message}


def server_error_body(detail: str) -> dict:
    return {"status": status.HTTP_500_INTERNAL_SERVER_ERROR, "message": "Server error", "error": detail}


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    field = ".".join(location)
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"gateway_error_handler: {request.url.path} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=server_error_body(exc.message))
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, exc.message))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(status.HTTP_400_BAD_REQUEST, _validation_message(exc)),
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"rate_limit_exceeded_handler: {request.url.path} - {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_body(status.HTTP_429_TOO_MANY_REQUESTS, f"Rate limit exceeded: {exc.detail}"),
        headers={"Retry-After": "60"},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_exception_handler: {request.url.path} - {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=server_error_body(str(exc)),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
