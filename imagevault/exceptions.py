"""
    Centralized exception handling for the FastAPI application.

    Every handled error is rendered as ``{"error": "<message>"}``.
"""
from fastapi import Request
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class UnauthorizedException(APIException):
    """Exception for a missing, invalid or insufficient session."""
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=401, detail=detail)

class ValidationException(APIException):
    """Exception for malformed input, naming the first offending field."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class ImageNotFoundException(APIException):
    """Exception for when an image is not found."""
    def __init__(self, image_id: str):
        super().__init__(status_code=404, detail=f"Image with ID '{image_id}' not found.")

class ConflictException(APIException):
    """Exception for a conditioned write that lost against the stored state."""
    def __init__(self, detail: str):
        super().__init__(status_code=409, detail=detail)

class ConfigurationException(APIException):
    """Exception for a required bucket or table name that is not configured."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

class UpstreamException(APIException):
    """Exception for S3 or DynamoDB failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

def first_error_message(errors) -> str:
    """Formats the first pydantic error as ``field: message``."""
    if not errors:
        return "Invalid payload"
    err = errors[0]
    loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    return f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid payload")

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    if exc.status_code >= 500:
        log.error(f"API Exception: {exc.detail}", exc_info=exc)
    else:
        log.info("API Exception %s: %s", exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles HTTP exceptions, including the router's own 404 and 405 responses."""
    log.info("HTTP Exception %s: %s", exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles request parsing errors raised by FastAPI itself."""
    detail = first_error_message(exc.errors())
    log.info("Request validation failed: %s", detail)
    return JSONResponse(
        status_code=400,
        content={"error": detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error(f"Unhandled Exception: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred."},
    )

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
