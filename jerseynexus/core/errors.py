from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException


class PaymentGatewayError(Exception):
    """Raised when eSewa or Khalti cannot be reached or rejects a request."""

    def __init__(self, message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}


class PaymentCallbackError(Exception):
    """A gateway callback that cannot settle; ``reason`` goes into the failure redirect."""

    def __init__(self, reason: str, order_id: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.order_id = order_id


def send_response(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return JSONResponse(content=jsonable_encoder(body), status_code=status_code)


def error_response(error: str, status_code: int, **extra) -> JSONResponse:
    body = {"success": False, "error": error, **extra}
    return JSONResponse(content=jsonable_encoder(body), status_code=status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(
            f"Endpoint {request.url.path} not found",
            404,
            message="The requested resource could not be found on this server",
        )
    return JSONResponse(
        content={"success": False, "error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({
            "field": ".".join(loc) or "body",
            "message": error.get("msg"),
            "value": error.get("input"),
        })
    logger.debug(f"Validation failed on {request.url.path}: {details}")
    return error_response("Validation failed", 400, details=details)


async def gateway_exception_handler(request: Request, exc: PaymentGatewayError):
    logger.error(f"Payment gateway error on {request.url.path}: {exc.message} {exc.payload}")
    return error_response(exc.message, 502, details=exc.payload)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PaymentGatewayError, gateway_exception_handler)
