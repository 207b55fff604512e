"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,
    TransientStorageError,
    SystemicPreconditionError,

    # Tenders
    TenderNotFoundError,
    NoPredecessorTenderError,

    # Positions
    PositionNotFoundError,
    InvalidPositionError,
    PositionUploadError,
    SpreadsheetParseError,

    # Mappings
    MappingNotFoundError,
    MappingConflictError,
    InvalidStatusTransitionError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",
    "TransientStorageError",
    "SystemicPreconditionError",

    # Tenders
    "TenderNotFoundError",
    "NoPredecessorTenderError",

    # Positions
    "PositionNotFoundError",
    "InvalidPositionError",
    "PositionUploadError",
    "SpreadsheetParseError",

    # Mappings
    "MappingNotFoundError",
    "MappingConflictError",
    "InvalidStatusTransitionError",
]
