"""
BOQ item and work-material link repositories.

Both tables hang off a client position (`client_position_id`).
"""

from __future__ import annotations

from typing import Optional
import structlog

from config import get_supabase_client
from models.boq import BOQItem, WorkMaterialLink, ITEM_COPY_KEY, LINK_COPY_KEY
from repositories.base import fetch_all, storage_error

logger = structlog.get_logger(__name__)


class BOQItemRepository:
    """Reads, copies and deletes BOQ items."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()
        self.table = "boq_items"

    def list(self, position_id: str) -> list[BOQItem]:
        """Get all BOQ items of a position in display order."""
        try:
            rows = fetch_all(
                lambda: (
                    self.db.table(self.table)
                    .select("*")
                    .eq("client_position_id", position_id)
                    .order("sort_order")
                )
            )
        except Exception as e:
            logger.error("list_boq_items_failed", position_id=position_id, error=str(e))
            raise storage_error("select", e, {"position_id": position_id})

        return [BOQItem(**row) for row in rows]

    def copy(self, item: BOQItem, new_position_id: str, new_tender_id: str) -> BOQItem:
        """
        Write a copy of item under another position.

        All columns except id and timestamps are kept. The write is an
        upsert on (position, source item), so a retry after a timed-out
        attempt that did commit returns that row instead of a duplicate.

        Returns:
            The inserted item (with its new id)
        """
        try:
            result = (
                self.db.table(self.table)
                .upsert(item.copy_payload(new_position_id, new_tender_id), on_conflict=ITEM_COPY_KEY)
                .execute()
            )
        except Exception as e:
            logger.error("copy_boq_item_failed", item_id=item.id, error=str(e))
            raise storage_error("insert", e, {"item_id": item.id})

        return BOQItem(**result.data[0])

    def delete(self, item_ids: list[str]) -> None:
        """Delete BOQ items by id."""
        if not item_ids:
            return

        try:
            self.db.table(self.table).delete().in_("id", item_ids).execute()
        except Exception as e:
            logger.error("delete_boq_items_failed", count=len(item_ids), error=str(e))
            raise storage_error("delete", e)


class LinkRepository:
    """Reads, copies and deletes work-material links."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()
        self.table = "work_material_links"

    def list(self, position_id: str) -> list[WorkMaterialLink]:
        """Get all links owned by a position."""
        try:
            rows = fetch_all(
                lambda: (
                    self.db.table(self.table)
                    .select("*")
                    .eq("client_position_id", position_id)
                    .order("created_at")
                )
            )
        except Exception as e:
            logger.error("list_links_failed", position_id=position_id, error=str(e))
            raise storage_error("select", e, {"position_id": position_id})

        return [WorkMaterialLink(**row) for row in rows]

    def copy(
        self,
        link: WorkMaterialLink,
        id_table: dict[str, str],
        new_position_id: str
    ) -> Optional[WorkMaterialLink]:
        """
        Write a copy of link with its endpoints translated.

        Upserted on (position, source link) like item copies.

        Args:
            link: Link of the old position
            id_table: Old BOQ item id → new BOQ item id
            new_position_id: Position that owns the copy

        Returns:
            The inserted link, or None if an endpoint has no translation
            (nothing is inserted then)
        """
        payload = link.translated_payload(id_table, new_position_id)

        if payload is None:
            logger.debug("link_dropped", link_id=link.id, endpoints=link.endpoints())
            return None

        try:
            result = (
                self.db.table(self.table)
                .upsert(payload, on_conflict=LINK_COPY_KEY)
                .execute()
            )
        except Exception as e:
            logger.error("copy_link_failed", link_id=link.id, error=str(e))
            raise storage_error("insert", e, {"link_id": link.id})

        return WorkMaterialLink(**result.data[0])

    def delete(self, link_ids: list[str]) -> None:
        """Delete links by id."""
        if not link_ids:
            return

        try:
            self.db.table(self.table).delete().in_("id", link_ids).execute()
        except Exception as e:
            logger.error("delete_links_failed", count=len(link_ids), error=str(e))
            raise storage_error("delete", e)


# Singleton instances
_boq_item_repository: Optional[BOQItemRepository] = None
_link_repository: Optional[LinkRepository] = None


def get_boq_item_repository() -> BOQItemRepository:
    """Get or create BOQItemRepository instance."""
    global _boq_item_repository
    if _boq_item_repository is None:
        _boq_item_repository = BOQItemRepository()
    return _boq_item_repository


def get_link_repository() -> LinkRepository:
    """Get or create LinkRepository instance."""
    global _link_repository
    if _link_repository is None:
        _link_repository = LinkRepository()
    return _link_repository
