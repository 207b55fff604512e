"""
Custom exception classes for the application.

Every error carries a code, a human-readable message, an HTTP status code
and a details dict, so routes can return them as-is.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.
    
    All custom exceptions inherit from this.
    
    Attributes:
        code: Error code (e.g., "MAPPING_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """
    
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)
    
    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""
    
    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""
    
    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""
    
    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""
    
    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class TransientStorageError(DatabaseError):
    """
    Storage call failed for a reason that may go away (timeout, 503, 429).

    Callers retry these with backoff before giving up.
    """

    retryable = True

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(operation, message, details)
        self.code = "TRANSIENT_STORAGE_ERROR"
        self.status_code = 503


class SystemicPreconditionError(AppError):
    """A precondition for the whole operation does not hold (412)."""

    def __init__(
        self,
        message: str,
        code: str = "PRECONDITION_FAILED",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=412,
            details=details
        )


# ===================
# TENDER ERRORS
# ===================

class TenderNotFoundError(NotFoundError):
    """Tender not found."""

    def __init__(self, tender_id: str):
        super().__init__(
            resource="Tender",
            identifier=tender_id,
            code="TENDER_NOT_FOUND"
        )


class NoPredecessorTenderError(SystemicPreconditionError):
    """No previous version can be resolved for a tender."""

    def __init__(self, tender_id: str):
        super().__init__(
            code="NO_PREDECESSOR_TENDER",
            message="No previous tender version found for this tender",
            details={"tender_id": tender_id}
        )


# ===================
# POSITION ERRORS
# ===================

class PositionNotFoundError(NotFoundError):
    """Client position not found."""

    def __init__(self, position_id: str):
        super().__init__(
            resource="Position",
            identifier=position_id,
            code="POSITION_NOT_FOUND"
        )


class InvalidPositionError(ValidationError):
    """Position cannot take part in the requested operation."""

    def __init__(self, position_id: Optional[str], reason: str):
        super().__init__(
            code="INVALID_POSITION",
            message=reason,
            details={"position_id": position_id}
        )


class PositionUploadError(ValidationError):
    """Uploaded position rows failed validation."""

    def __init__(self, errors: list[dict]):
        super().__init__(
            code="POSITION_UPLOAD_FAILED",
            message=f"Upload validation failed with {len(errors)} errors",
            details={"errors": errors}
        )


class SpreadsheetParseError(ValidationError):
    """Uploaded spreadsheet could not be read."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="SPREADSHEET_PARSE_FAILED",
            message=message,
            details=details
        )


# ===================
# MAPPING ERRORS
# ===================

class MappingNotFoundError(NotFoundError):
    """Version mapping not found."""

    def __init__(self, mapping_id: str):
        super().__init__(
            resource="Mapping",
            identifier=mapping_id,
            code="MAPPING_NOT_FOUND"
        )


class MappingConflictError(ConflictError):
    """A new-version position is claimed by more than one mapping."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="MAPPING_CONFLICT",
            message=message,
            details=details
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid mapping status transition."""

    def __init__(self, current_status: str, new_status: str, terminal_status: str = "applied"):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
                "reason": f"Status can only move forward, and {terminal_status} is terminal"
            }
        )
