"""
Tender and tender version schemas.
"""

from pydantic import Field
from typing import Optional
from datetime import datetime

from models.base import BaseSchema
from models.mapping import Mapping, MatchingOptions
from models.position import PositionRow
from models.transfer import TransferResult


class Tender(BaseSchema):
    """A tender (one version of it)."""

    id: str = Field(..., description="Tender UUID")
    title: Optional[str] = None
    tender_number: Optional[str] = None
    client_name: Optional[str] = None
    description: Optional[str] = None
    version: int = Field(1, ge=1, description="Version number, 1 for the original")
    parent_version_id: Optional[str] = Field(None, description="Direct predecessor tender UUID")
    version_status: Optional[str] = None
    version_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class VersionInfo(BaseSchema):
    """Whether a tender is a version of another one."""

    is_version: bool
    parent_tender_id: Optional[str] = None
    version: int


class VersionComparison(BaseSchema):
    """Position-level differences between two tender versions."""

    added: int
    removed: int
    modified: int
    total: int


class VersionUploadRequest(BaseSchema):
    """Upload parsed spreadsheet rows as a new version of a tender."""

    rows: list[PositionRow] = Field(..., min_length=1)
    auto_match: bool = True
    options: Optional[MatchingOptions] = None


class VersionUploadResult(BaseSchema):
    """Outcome of uploading a new tender version."""

    tender_id: str
    positions_count: int
    matched_count: int = 0
    new_count: int = 0
    deleted_count: int = 0
    additional_count: int = 0
    mappings: Optional[list[Mapping]] = None
    transfer: Optional[TransferResult] = None
