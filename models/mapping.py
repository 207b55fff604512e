"""
Tender version mapping schemas.

A mapping pairs a position of the previous tender version with a position
of the new one (or records that one side has no counterpart).
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema
from models.position import Position


class MappingType(str, Enum):
    """How a mapping came to be."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"
    NEW = "new"
    DELETED = "deleted"
    ADDITIONAL = "additional"


class MappingStatus(str, Enum):
    """Review status of a mapping."""
    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    APPLIED = "applied"


class MappingAction(str, Enum):
    """What the transfer does with a mapping."""
    COPY_CHILDREN = "copy_children"
    CREATE_NEW = "create_new"
    DELETE = "delete"
    PRESERVE_ADDITIONAL = "preserve_additional"


MATCHED_TYPES = {MappingType.EXACT, MappingType.FUZZY, MappingType.MANUAL}

# Review stage of each status (lower = earlier)
STATUS_STAGE = {
    MappingStatus.SUGGESTED: 0,
    MappingStatus.CONFIRMED: 1,
    MappingStatus.REJECTED: 1,
    MappingStatus.APPLIED: 2,
}


def is_valid_status_transition(current: MappingStatus, new: MappingStatus) -> bool:
    """
    Check if a status change is allowed.

    Rules:
    - Can move to a later stage (SUGGESTED → CONFIRMED, CONFIRMED → APPLIED)
    - CONFIRMED and REJECTED may replace each other (same review stage)
    - Cannot go back to SUGGESTED (only reassignment resets a mapping)
    - APPLIED is terminal
    """
    if current == MappingStatus.APPLIED:
        return False

    if current == new:
        return False

    return STATUS_STAGE[new] >= STATUS_STAGE[current]


class PositionSnapshot(BaseSchema):
    """Display fields of a position, frozen into the mapping."""

    id: str
    number: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    volume: Optional[float] = None
    note: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def of(cls, position: Position) -> "PositionSnapshot":
        return cls(
            id=position.id,
            number=position.number,
            name=position.name,
            unit=position.unit,
            volume=position.volume,
            note=position.note,
            kind=position.kind,
        )


class Mapping(BaseSchema):
    """
    Correspondence between an old-version and a new-version position.

    `id` stays None until the mapping has been stored; `persisted` tells
    the two states apart.
    """

    id: Optional[str] = None
    old_tender_id: str
    new_tender_id: str
    old_position: Optional[PositionSnapshot] = None
    new_position: Optional[PositionSnapshot] = None
    mapping_type: MappingType
    confidence: float = Field(0.0, ge=0, le=1)
    text_score: Optional[float] = None
    context_score: Optional[float] = None
    type_score: Optional[float] = None
    status: MappingStatus = MappingStatus.SUGGESTED
    action: MappingAction
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def persisted(self) -> bool:
        return self.id is not None

    @property
    def old_position_id(self) -> Optional[str]:
        return self.old_position.id if self.old_position else None

    @property
    def new_position_id(self) -> Optional[str]:
        return self.new_position.id if self.new_position else None

    @property
    def is_additional(self) -> bool:
        return self.mapping_type == MappingType.ADDITIONAL

    @property
    def is_matched(self) -> bool:
        return self.mapping_type in MATCHED_TYPES

    def clear_new_side(self) -> None:
        """Drop the new position and all scores."""
        self.new_position = None
        self.confidence = 0.0
        self.text_score = None
        self.context_score = None
        self.type_score = None

    # ===================
    # ROW CONVERSION
    # ===================

    def to_row(self) -> dict:
        """Convert to a tender_version_mappings row."""
        old = self.old_position
        new = self.new_position
        row = {
            "old_tender_id": self.old_tender_id,
            "new_tender_id": self.new_tender_id,
            "old_position_id": old.id if old else None,
            "old_position_number": old.number if old else None,
            "old_work_name": old.name if old else None,
            "old_unit": old.unit if old else None,
            "old_volume": old.volume if old else None,
            "old_client_note": old.note if old else None,
            "old_position_type": old.kind if old else None,
            "new_position_id": new.id if new else None,
            "new_position_number": new.number if new else None,
            "new_work_name": new.name if new else None,
            "new_unit": new.unit if new else None,
            "new_volume": new.volume if new else None,
            "new_client_note": new.note if new else None,
            "new_position_type": new.kind if new else None,
            "mapping_type": self.mapping_type.value,
            "confidence_score": self.confidence,
            "fuzzy_score": self.text_score,
            "context_score": self.context_score,
            "hierarchy_score": self.type_score,
            "mapping_status": self.status.value,
            "action_type": self.action.value,
            "is_dop": self.is_additional,
            "notes": self.notes,
        }
        if self.id:
            row["id"] = self.id
        return row

    @classmethod
    def from_row(cls, row: dict) -> "Mapping":
        """Build from a tender_version_mappings row."""
        old = None
        if row.get("old_position_id"):
            old = PositionSnapshot(
                id=row["old_position_id"],
                number=row.get("old_position_number"),
                name=row.get("old_work_name"),
                unit=row.get("old_unit"),
                volume=row.get("old_volume"),
                note=row.get("old_client_note"),
                kind=row.get("old_position_type"),
            )

        new = None
        if row.get("new_position_id"):
            new = PositionSnapshot(
                id=row["new_position_id"],
                number=row.get("new_position_number"),
                name=row.get("new_work_name"),
                unit=row.get("new_unit"),
                volume=row.get("new_volume"),
                note=row.get("new_client_note"),
                kind=row.get("new_position_type"),
            )

        return cls(
            id=row.get("id"),
            old_tender_id=row["old_tender_id"],
            new_tender_id=row["new_tender_id"],
            old_position=old,
            new_position=new,
            mapping_type=row["mapping_type"],
            confidence=row.get("confidence_score") or 0.0,
            text_score=row.get("fuzzy_score"),
            context_score=row.get("context_score"),
            type_score=row.get("hierarchy_score"),
            status=row.get("mapping_status") or MappingStatus.SUGGESTED,
            action=row["action_type"],
            notes=row.get("notes"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class MappingChangeset(BaseModel):
    """Mappings to write and mapping ids to delete, applied all-or-nothing."""

    upserts: list[Mapping] = Field(default_factory=list)
    deletes: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.upserts and not self.deletes


class MatchingOptions(BaseSchema):
    """
    Tuning knobs of the auto-matching pass.

    Weights need not sum to 1; that is left to the caller.
    """

    text_weight: float = Field(0.6, ge=0)
    context_weight: float = Field(0.3, ge=0)
    type_weight: float = Field(0.1, ge=0)
    match_threshold: float = Field(0.5, ge=0, le=1)
    auto_confirm_threshold: float = Field(0.9, ge=0, le=1)

    @classmethod
    def from_settings(cls, settings) -> "MatchingOptions":
        return cls(
            text_weight=settings.match_text_weight,
            context_weight=settings.match_context_weight,
            type_weight=settings.match_type_weight,
            match_threshold=settings.match_threshold,
            auto_confirm_threshold=settings.auto_confirm_threshold,
        )


class MappingStatistics(BaseSchema):
    """Counts over a mapping set."""

    total: int = 0
    matched: int = 0
    exact: int = 0
    fuzzy: int = 0
    manual: int = 0
    new: int = 0
    deleted: int = 0
    additional: int = 0
    suggested: int = 0
    confirmed: int = 0
    rejected: int = 0
    applied: int = 0

    @classmethod
    def of(cls, mappings: list[Mapping]) -> "MappingStatistics":
        stats = cls(total=len(mappings))
        for m in mappings:
            type_field = m.mapping_type.value
            setattr(stats, type_field, getattr(stats, type_field) + 1)
            status_field = m.status.value
            setattr(stats, status_field, getattr(stats, status_field) + 1)
        stats.matched = stats.exact + stats.fuzzy + stats.manual
        return stats


class MappingListResponse(BaseSchema):
    """Mappings of a tender with statistics."""

    data: list[Mapping]
    statistics: MappingStatistics


class AutoMatchRequest(BaseSchema):
    """Run the matcher between two tender versions."""

    old_tender_id: str
    new_tender_id: str
    options: Optional[MatchingOptions] = None
    save: bool = True
    replace: bool = False


class MappingStatusUpdate(BaseSchema):
    """Confirm or reject a mapping."""

    status: MappingStatus


class MappingReassign(BaseSchema):
    """Point a mapping at another new-version position (or none)."""

    new_position_id: Optional[str] = None
