"""
Transfer result schemas.
"""

from pydantic import Field, computed_field
from typing import Optional

from models.base import BaseSchema


class TransferError(BaseSchema):
    """A mapping whose data could not be transferred."""

    mapping_id: Optional[str] = None
    old_position_number: Optional[str] = None
    message: str
    error_type: str


class TransferResult(BaseSchema):
    """Aggregate outcome of applying the mappings of a tender."""

    new_tender_id: str
    old_tender_id: Optional[str] = None
    positions_transferred: int = 0
    items_transferred: int = 0
    links_transferred: int = 0
    links_dropped: int = 0
    additional_positions_transferred: int = 0
    bookkeeping_applied: int = 0
    auto_confirmed: int = 0
    skipped: int = 0
    errors: list[TransferError] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return not self.errors
