"""
API errors

Every failure leaves the API as JSON shaped `{message, statusCode, error}`.
Services raise one of the `AppError` subclasses below; anything else becomes
a 500.
"""
import logging
from http import HTTPStatus

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Internal server error"


class AppError(HTTPException):
    status_code = 500

    def __init__(self, message: str = DEFAULT_MESSAGE, status_code: int = None):
        super().__init__(status_code=status_code or self.status_code, detail=message)


class BadRequestError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class OutOfStockError(ConflictError):
    def __init__(self, product_id: int, size: str):
        super().__init__(f"Out of stock: product {product_id} (size {size})")
        self.product_id = product_id
        self.size = size


class InsufficientPointsError(BadRequestError):
    pass


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return HTTPStatus.INTERNAL_SERVER_ERROR.phrase


def error_body(status_code: int, message: str) -> dict:
    return {"message": message, "statusCode": status_code, "error": _reason(status_code)}


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    message = exc.detail if isinstance(exc.detail, str) else _reason(exc.status_code)
    return JSONResponse(error_body(exc.status_code, message), status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    return JSONResponse(error_body(400, message), status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(error_body(500, DEFAULT_MESSAGE), status_code=500)


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
