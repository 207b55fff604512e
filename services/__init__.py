"""
Business logic services.

Each service handles one step of carrying a tender over to a new version.
"""

from services.similarity_service import MatchScore, composite_score
from services.matching_service import (
    MatchingService,
    get_matching_service,
    match_positions,
    ensure_exclusive,
)
from services.reconciliation_service import ReconciliationService, get_reconciliation_service
from services.transfer_service import TransferService, get_transfer_service
from services.version_service import VersionService, get_version_service

__all__ = [
    "MatchScore",
    "composite_score",
    "MatchingService",
    "get_matching_service",
    "match_positions",
    "ensure_exclusive",
    "ReconciliationService",
    "get_reconciliation_service",
    "TransferService",
    "get_transfer_service",
    "VersionService",
    "get_version_service",
]
