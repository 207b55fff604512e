"""
Supabase-backed repositories.

Services depend on these through their constructor so tests can pass
in-memory replacements.
"""

from repositories.position_repository import PositionRepository, get_position_repository
from repositories.boq_repository import (
    BOQItemRepository,
    LinkRepository,
    get_boq_item_repository,
    get_link_repository,
)
from repositories.mapping_repository import MappingRepository, get_mapping_repository
from repositories.tender_repository import TenderRepository, get_tender_repository

__all__ = [
    "PositionRepository",
    "get_position_repository",
    "BOQItemRepository",
    "LinkRepository",
    "get_boq_item_repository",
    "get_link_repository",
    "MappingRepository",
    "get_mapping_repository",
    "TenderRepository",
    "get_tender_repository",
]
