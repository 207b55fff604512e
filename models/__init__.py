"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.position import (
    PositionKind,
    HIERARCHY_LEVELS,
    normalize_position_kind,
    Position,
    PositionCreate,
    PositionRow,
)
from models.boq import BOQItem, WorkMaterialLink
from models.mapping import (
    MappingType,
    MappingStatus,
    MappingAction,
    is_valid_status_transition,
    PositionSnapshot,
    Mapping,
    MappingChangeset,
    MatchingOptions,
    MappingStatistics,
)
from models.transfer import TransferError, TransferResult
from models.tender import (
    Tender,
    VersionInfo,
    VersionComparison,
    VersionUploadResult,
)

__all__ = [
    # Base
    "BaseSchema",

    # Positions
    "PositionKind",
    "HIERARCHY_LEVELS",
    "normalize_position_kind",
    "Position",
    "PositionCreate",
    "PositionRow",

    # BOQ
    "BOQItem",
    "WorkMaterialLink",

    # Mappings
    "MappingType",
    "MappingStatus",
    "MappingAction",
    "is_valid_status_transition",
    "PositionSnapshot",
    "Mapping",
    "MappingChangeset",
    "MatchingOptions",
    "MappingStatistics",

    # Transfer
    "TransferError",
    "TransferResult",

    # Tenders
    "Tender",
    "VersionInfo",
    "VersionComparison",
    "VersionUploadResult",
]
