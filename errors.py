"""
Error taxonomy for drive operations.

Every remote-call failure is converted into one of these at the service
boundary. The REST facade turns them into `{"error": message}` responses,
the drive session records them as its `error` state.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class DriveError(Exception):
    status_code = 500
    default_message = "Drive operation failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(DriveError):
    status_code = 401
    default_message = "User not authenticated"


class Forbidden(DriveError):
    status_code = 403
    default_message = "Invalid or expired download link"


class ValidationError(DriveError):
    status_code = 400
    default_message = "Invalid request"


class ConflictError(DriveError):
    status_code = 409
    default_message = "Folder with this name already exists"


class NotFoundError(DriveError):
    status_code = 404
    default_message = "Item not found"


class NotEmptyError(DriveError):
    status_code = 400
    default_message = "Cannot delete folder that contains files or subfolders"


class UploadError(DriveError):
    default_message = "Failed to upload file"


class MetadataError(DriveError):
    default_message = "Failed to save file metadata"


class FetchError(DriveError):
    default_message = "Failed to fetch drive contents"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def set_exception_handlers(app: FastAPI) -> FastAPI:
    @app.exception_handler(DriveError)
    async def drive_error_handler(request: Request, exc: DriveError):
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning("%s %s -> HTTP %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("%s %s -> invalid request: %s", request.method, request.url.path, exc.errors())
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return error_response(400, message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("%s %s -> unhandled error", request.method, request.url.path, exc_info=exc)
        return error_response(500, "Internal server error")

    return app
