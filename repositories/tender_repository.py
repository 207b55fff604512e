"""
Tender repository.

Each version of a tender is its own row in `tenders`, linked to its
predecessor through `parent_version_id`.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.tender import Tender
from exceptions import TenderNotFoundError
from repositories.base import storage_error

logger = structlog.get_logger(__name__)


class TenderRepository:
    """Reads and creates tender versions."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()
        self.table = "tenders"

    def get(self, tender_id: str) -> Tender:
        """
        Get a tender.

        Raises:
            TenderNotFoundError: If the tender doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", tender_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_tender_failed", tender_id=tender_id, error=str(e))
            raise storage_error("select", e, {"tender_id": tender_id})

        if not result.data:
            raise TenderNotFoundError(tender_id)

        return Tender(**result.data[0])

    def create(self, data: dict) -> Tender:
        """Insert a tender row and return it."""
        try:
            result = self.db.table(self.table).insert(data).execute()
        except Exception as e:
            logger.error("create_tender_failed", error=str(e))
            raise storage_error("insert", e)

        return Tender(**result.data[0])

    def delete(self, tender_id: str) -> None:
        """Delete a tender."""
        try:
            self.db.table(self.table).delete().eq("id", tender_id).execute()
        except Exception as e:
            logger.error("delete_tender_failed", tender_id=tender_id, error=str(e))
            raise storage_error("delete", e, {"tender_id": tender_id})

    def list_children(self, parent_id: str) -> list[Tender]:
        """Tenders whose direct predecessor is parent_id."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("parent_version_id", parent_id)
                .order("version")
                .execute()
            )
        except Exception as e:
            logger.error("list_tender_children_failed", parent_id=parent_id, error=str(e))
            raise storage_error("select", e, {"parent_id": parent_id})

        return [Tender(**row) for row in result.data]


# Singleton instance
_tender_repository: Optional[TenderRepository] = None


def get_tender_repository() -> TenderRepository:
    """Get or create TenderRepository instance."""
    global _tender_repository
    if _tender_repository is None:
        _tender_repository = TenderRepository()
    return _tender_repository
