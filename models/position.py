"""
Client position schemas.

A position is one line of a tender's customer-facing structure
(section, header, executable work, ...). Positions of successive tender
versions are what the matcher pairs up.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class PositionKind(str, Enum):
    """Structural type of a position."""
    ARTICLE = "article"
    SECTION = "section"
    SUBSECTION = "subsection"
    HEADER = "header"
    SUBHEADER = "subheader"
    EXECUTABLE = "executable"


HIERARCHY_LEVELS = {
    PositionKind.ARTICLE: 1,
    PositionKind.SECTION: 2,
    PositionKind.SUBSECTION: 3,
    PositionKind.HEADER: 4,
    PositionKind.SUBHEADER: 5,
    PositionKind.EXECUTABLE: 6,
}

# Labels used in customer spreadsheets
RUSSIAN_KIND_LABELS = {
    "статья": PositionKind.ARTICLE,
    "раздел": PositionKind.SECTION,
    "подраздел": PositionKind.SUBSECTION,
    "заголовок": PositionKind.HEADER,
    "подзаголовок": PositionKind.SUBHEADER,
    "исполняемая": PositionKind.EXECUTABLE,
}


def normalize_position_kind(raw: Optional[str]) -> PositionKind:
    """
    Map a raw type label to a PositionKind.

    Accepts English values and Russian spreadsheet labels in any case.
    Blank or unknown labels become EXECUTABLE.
    """
    if not raw:
        return PositionKind.EXECUTABLE

    clean = str(raw).strip().lower()

    for kind in PositionKind:
        if kind.value == clean:
            return kind

    return RUSSIAN_KIND_LABELS.get(clean, PositionKind.EXECUTABLE)


class Position(BaseSchema):
    """A position of one tender version."""

    id: str = Field(..., description="Position UUID")
    tender_id: str = Field(..., description="Owning tender UUID")
    number: Optional[str] = Field(None, description="Customer numbering, plain or dotted (e.g. 2.3)")
    name: str = Field("", description="Work name")
    unit: Optional[str] = Field(None, description="Unit of measure")
    volume: Optional[float] = Field(None, description="Customer volume")
    note: Optional[str] = Field(None, description="Customer note")
    kind: Optional[str] = Field(None, description="Structural type tag")
    is_additional: bool = Field(False, description="Out-of-structure additional (DOP) position")
    sort_order: int = Field(0, description="Listing order within the tender")
    hierarchy_level: Optional[int] = Field(None, description="Depth derived from kind")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PositionCreate(BaseSchema):
    """Data needed to create a position in a tender."""

    number: str = Field(..., min_length=1, max_length=50, description="Customer numbering")
    name: str = Field(..., min_length=1, description="Work name")
    unit: Optional[str] = Field(None, max_length=50)
    volume: float = Field(0, description="Customer volume")
    note: Optional[str] = None
    kind: PositionKind = PositionKind.EXECUTABLE
    is_additional: bool = False
    sort_order: int = Field(0, ge=0)

    @property
    def hierarchy_level(self) -> int:
        return HIERARCHY_LEVELS[self.kind]


class PositionRow(BaseSchema):
    """
    Raw position row as produced by the spreadsheet parser.

    Everything is optional here; validation into PositionCreate happens
    in the version service so that all row errors are reported at once.
    """

    number: Optional[str] = None
    kind: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    volume: Optional[float] = None
    note: Optional[str] = None
    is_additional: bool = False

    @field_validator("number", mode="before")
    @classmethod
    def coerce_number(cls, v):
        """Spreadsheets hand numbers over as floats or ints."""
        if v is None:
            return None
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)
