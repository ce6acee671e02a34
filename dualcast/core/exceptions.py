from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

class DualcastException(Exception):
    """Base exception for Dualcast application"""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

class JobNotFoundError(DualcastException):
    """Raised when a job is not found or doesn't belong to the caller"""
    def __init__(self, message: str = "Job not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)

class ValidationError(DualcastException):
    """Raised when validation fails"""
    def __init__(self, message: str = "Validation error"):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)

class PayloadTooLargeError(DualcastException):
    """Raised when an upload exceeds the configured size cap"""
    def __init__(self, message: str = "Uploaded file is too large"):
        super().__init__(message, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

class UnsupportedMediaError(DualcastException):
    """Raised when an upload has a content type we cannot process"""
    def __init__(self, message: str = "Unsupported media type"):
        super().__init__(message, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE)

class ActiveJobExistsError(DualcastException):
    """Raised when the owner already has a job in flight"""
    def __init__(self, message: str = "A publish job is already in progress"):
        super().__init__(message, status.HTTP_409_CONFLICT)

class InvalidStateTransition(DualcastException):
    """Raised when a job mutation would break the job lifecycle rules"""
    def __init__(self, message: str = "Invalid job state transition"):
        super().__init__(message, status.HTTP_409_CONFLICT)

async def dualcast_exception_handler(request: Request, exc: DualcastException):
    """Handle custom Dualcast exceptions"""
    logger.error(f"Dualcast exception: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )

async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle SQLAlchemy database exceptions"""
    logger.error(f"Database error: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error occurred"}
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )
