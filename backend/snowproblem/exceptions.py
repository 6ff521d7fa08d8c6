from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import List, Optional
import traceback
from .logger import logger


class SnowProblemException(Exception):
    """Base exception for the marketplace application"""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


class InvalidRequestError(SnowProblemException):
    """Raised when the request is well-formed but cannot be acted on; nothing was changed"""
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR", 400)


class PermissionDeniedError(SnowProblemException):
    """Raised when the actor has no relationship to the record that allows the action"""
    def __init__(self, message: str = "You are not allowed to perform this action"):
        super().__init__(message, "PERMISSION_DENIED", 403)


class NotFoundError(SnowProblemException):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code, 404)


class JobNotFoundError(NotFoundError):
    """Raised when job is not found"""
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", "JOB_NOT_FOUND")


class BidNotFoundError(NotFoundError):
    """Raised when bid is not found or does not belong to the job"""
    def __init__(self, bid_id: str):
        super().__init__(f"Bid {bid_id} not found", "BID_NOT_FOUND")


class ConflictError(SnowProblemException):
    """Raised when a concurrent change won the race; retrying will not help"""
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code, 409)


class InvalidJobStateError(ConflictError):
    """Raised when job is in invalid state for operation"""
    def __init__(self, job_id: str, current_state: str, expected_state: str):
        super().__init__(
            f"Job {job_id} is in state '{current_state}', expected '{expected_state}'",
            "INVALID_JOB_STATE",
        )
        self.current_state = current_state
        self.expected_state = expected_state


class TransientError(SnowProblemException):
    """Raised when the store or an upstream service is unavailable; the whole action may be retried"""
    def __init__(self, message: str = "Service temporarily unavailable, please retry"):
        super().__init__(message, "TRANSIENT_ERROR", 503)


class PartialUploadError(SnowProblemException):
    """Raised when a photo batch could not be stored"""
    def __init__(self, succeeded: int, failed: List[str], message: Optional[str] = None):
        total = succeeded + len(failed)
        super().__init__(
            message or f"{len(failed)} of {total} photos failed to upload",
            "PARTIAL_UPLOAD",
            502,
        )
        self.succeeded = succeeded
        self.failed = failed


async def snowproblem_exception_handler(request: Request, exc: SnowProblemException):
    """Handle custom application exceptions"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.code} - {exc.message}",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "request_path": request.url.path,
        }
    )
    content = {
        "error": exc.code,
        "message": exc.message,
        "status_code": exc.status_code,
    }
    if isinstance(exc, PartialUploadError):
        content["failed"] = exc.failed
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={
            "http_status_code": exc.status_code,
            "http_detail": exc.detail,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        },
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
        extra={
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "request_path": request.url.path,
            "exc_traceback": traceback.format_exc(),
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An internal error occurred. Please try again later.",
        }
    )
