"""
Error envelope shared by every route.

Handlers raise ``HTTPException`` (plain message) or ``ApiError`` (message plus a
machine-readable ``error`` code and optional extra fields). The handlers
registered by ``register_exception_handlers`` render both as
``{"message": ..., "error"?: ..., ...}``.
"""
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from app_logger import get_logger
from config import settings

log = get_logger("errors")

DUPLICATE_STANDARD = "DUPLICATE_STANDARD"
DUPLICATE_DIVISION = "DUPLICATE_DIVISION"
DUPLICATE_ROLL_NUMBER = "DUPLICATE_ROLL_NUMBER"
DUPLICATE_UID = "DUPLICATE_UID"
DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
STORAGE_ERROR = "STORAGE_ERROR"


class ApiError(HTTPException):
    def __init__(self, status_code: int, message: str, error: Optional[str] = None, **extra: Any):
        super().__init__(status_code=status_code, detail=message)
        self.error = error
        self.extra = extra

    @property
    def message(self) -> str:
        return self.detail


def _http_error_body(exc: StarletteHTTPException) -> dict:
    if exc.status_code == 404 and exc.detail == "Not Found":
        return {"message": "Route not found"}
    body: dict[str, Any] = {"message": exc.detail}
    if isinstance(exc, ApiError):
        if exc.error:
            body["error"] = exc.error
        body.update(exc.extra)
    return body


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        jsonable_encoder(_http_error_body(exc)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "msg": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return JSONResponse({"message": "Validation failed", "errors": errors}, status_code=400)


async def unexpected_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    body: dict[str, Any] = {"message": "Something went wrong!"}
    if settings.is_development:
        body["error"] = str(exc)
    return JSONResponse(body, status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
