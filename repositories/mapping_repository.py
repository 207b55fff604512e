"""
Tender version mapping repository.

Mappings live in `tender_version_mappings`. Multi-row changes made by
manual reconciliation go through the `apply_version_mapping_changes`
database function so they land in one transaction.
"""

from __future__ import annotations

from typing import Optional
import structlog

from config import get_supabase_client
from models.mapping import Mapping, MappingChangeset, MappingStatus
from exceptions import MappingNotFoundError
from repositories.base import fetch_all, storage_error

logger = structlog.get_logger(__name__)


class MappingRepository:
    """Stores version mappings."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()
        self.table = "tender_version_mappings"
        self.commit_function = "apply_version_mapping_changes"

    # ===================
    # READ OPERATIONS
    # ===================

    def list(self, new_tender_id: str) -> list[Mapping]:
        """
        Get all mappings of a new tender version.

        Returns:
            Mappings ordered by confidence, highest first
        """
        try:
            rows = fetch_all(
                lambda: (
                    self.db.table(self.table)
                    .select("*")
                    .eq("new_tender_id", new_tender_id)
                    .order("confidence_score", desc=True)
                    .order("id")
                )
            )
        except Exception as e:
            logger.error("list_mappings_failed", new_tender_id=new_tender_id, error=str(e))
            raise storage_error("select", e, {"new_tender_id": new_tender_id})

        return [Mapping.from_row(row) for row in rows]

    def get(self, mapping_id: str) -> Mapping:
        """
        Get a single mapping.

        Raises:
            MappingNotFoundError: If the mapping doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", mapping_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_mapping_failed", mapping_id=mapping_id, error=str(e))
            raise storage_error("select", e, {"mapping_id": mapping_id})

        if not result.data:
            raise MappingNotFoundError(mapping_id)

        return Mapping.from_row(result.data[0])

    def find_predecessor(self, new_tender_id: str) -> Optional[str]:
        """Old tender id recorded on any mapping of new_tender_id."""
        try:
            result = (
                self.db.table(self.table)
                .select("old_tender_id")
                .eq("new_tender_id", new_tender_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("find_predecessor_failed", new_tender_id=new_tender_id, error=str(e))
            raise storage_error("select", e, {"new_tender_id": new_tender_id})

        if not result.data:
            return None

        return result.data[0]["old_tender_id"]

    # ===================
    # WRITE OPERATIONS
    # ===================

    def insert_many(self, mappings: list[Mapping]) -> list[Mapping]:
        """
        Store new mappings.

        Returns:
            The stored mappings (with ids), in input order
        """
        if not mappings:
            return []

        rows = [m.to_row() for m in mappings]

        try:
            result = self.db.table(self.table).insert(rows).execute()
        except Exception as e:
            logger.error("insert_mappings_failed", count=len(rows), error=str(e))
            raise storage_error("insert", e, {"count": len(rows)})

        logger.info("mappings_inserted", count=len(result.data))

        return [Mapping.from_row(row) for row in result.data]

    def update(self, mapping: Mapping) -> Mapping:
        """Overwrite a stored mapping with the given state."""
        row = mapping.to_row()
        row.pop("id", None)

        try:
            result = (
                self.db.table(self.table)
                .update(row)
                .eq("id", mapping.id)
                .execute()
            )
        except Exception as e:
            logger.error("update_mapping_failed", mapping_id=mapping.id, error=str(e))
            raise storage_error("update", e, {"mapping_id": mapping.id})

        if not result.data:
            raise MappingNotFoundError(mapping.id)

        return Mapping.from_row(result.data[0])

    def update_status(self, mapping_id: str, status: MappingStatus) -> None:
        """Set the status of a mapping."""
        try:
            result = (
                self.db.table(self.table)
                .update({"mapping_status": status.value})
                .eq("id", mapping_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_mapping_status_failed", mapping_id=mapping_id, error=str(e))
            raise storage_error("update", e, {"mapping_id": mapping_id})

        if not result.data:
            raise MappingNotFoundError(mapping_id)

    def commit(self, changeset: MappingChangeset) -> None:
        """
        Apply a change set in a single transaction.

        Rows with an id are updated, rows without one are inserted, ids in
        deletes are removed. Either everything is written or nothing is.

        Rows that free a position go first; otherwise upserts keep their
        list order, so a position must be released earlier in the list
        than it is claimed.
        """
        if changeset.is_empty:
            return

        params = {
            "p_upserts": [m.to_row() for m in changeset.upserts],
            "p_deletes": changeset.deletes,
        }

        try:
            self.db.rpc(self.commit_function, params).execute()
        except Exception as e:
            logger.error(
                "commit_mapping_changes_failed",
                upserts=len(changeset.upserts),
                deletes=len(changeset.deletes),
                error=str(e)
            )
            raise storage_error("commit", e)

        logger.info(
            "mapping_changes_committed",
            upserts=len(changeset.upserts),
            deletes=len(changeset.deletes)
        )

    def delete_for_tender(self, new_tender_id: str, keep_applied: bool = True) -> None:
        """Delete the mappings of a tender, by default leaving applied ones."""
        try:
            query = self.db.table(self.table).delete().eq("new_tender_id", new_tender_id)
            if keep_applied:
                query = query.neq("mapping_status", MappingStatus.APPLIED.value)
            query.execute()
        except Exception as e:
            logger.error("delete_mappings_failed", new_tender_id=new_tender_id, error=str(e))
            raise storage_error("delete", e, {"new_tender_id": new_tender_id})

        logger.info("mappings_deleted", new_tender_id=new_tender_id, keep_applied=keep_applied)


# Singleton instance
_mapping_repository: Optional[MappingRepository] = None


def get_mapping_repository() -> MappingRepository:
    """Get or create MappingRepository instance."""
    global _mapping_repository
    if _mapping_repository is None:
        _mapping_repository = MappingRepository()
    return _mapping_repository
