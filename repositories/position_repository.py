"""
Client position repository.

Positions live in the `client_positions` table. Column names follow the
customer spreadsheet: `item_no` is the customer's number, `position_number`
the listing order.
"""

from __future__ import annotations

from typing import Optional
import structlog

from config import get_supabase_client
from models.position import Position, PositionCreate
from exceptions import PositionNotFoundError
from repositories.base import fetch_all, storage_error

logger = structlog.get_logger(__name__)


class PositionRepository:
    """Reads and creates client positions."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()
        self.table = "client_positions"

    def list(self, tender_id: str) -> list[Position]:
        """
        Get all positions of a tender in listing order.

        Args:
            tender_id: Tender UUID

        Returns:
            Positions ordered by position_number
        """
        logger.debug("listing_positions", tender_id=tender_id)

        try:
            rows = fetch_all(
                lambda: (
                    self.db.table(self.table)
                    .select("*")
                    .eq("tender_id", tender_id)
                    .order("position_number")
                )
            )
        except Exception as e:
            logger.error("list_positions_failed", tender_id=tender_id, error=str(e))
            raise storage_error("select", e, {"tender_id": tender_id})

        return [self._row_to_position(row) for row in rows]

    def get(self, position_id: str) -> Position:
        """
        Get a single position.

        Raises:
            PositionNotFoundError: If the position doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", position_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_position_failed", position_id=position_id, error=str(e))
            raise storage_error("select", e, {"position_id": position_id})

        if not result.data:
            raise PositionNotFoundError(position_id)

        return self._row_to_position(result.data[0])

    def create(self, tender_id: str, data: PositionCreate) -> Position:
        """
        Create a position in a tender.

        Args:
            tender_id: Tender UUID
            data: Validated position data

        Returns:
            Created Position
        """
        row = {
            "tender_id": tender_id,
            "position_number": data.sort_order,
            "item_no": data.number,
            "work_name": data.name,
            "unit": data.unit,
            "volume": data.volume,
            "client_note": data.note,
            "position_type": data.kind.value,
            "hierarchy_level": data.hierarchy_level,
            "is_additional": data.is_additional,
            "total_materials_cost": 0,
            "total_works_cost": 0,
        }

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_position_failed", tender_id=tender_id, number=data.number, error=str(e))
            raise storage_error("insert", e, {"tender_id": tender_id})

        return self._row_to_position(result.data[0])

    def delete(self, position_id: str) -> None:
        """Delete a position (its BOQ items and links cascade)."""
        try:
            self.db.table(self.table).delete().eq("id", position_id).execute()
        except Exception as e:
            logger.error("delete_position_failed", position_id=position_id, error=str(e))
            raise storage_error("delete", e, {"position_id": position_id})

    def delete_for_tender(self, tender_id: str) -> None:
        """Delete all positions of a tender."""
        try:
            self.db.table(self.table).delete().eq("tender_id", tender_id).execute()
        except Exception as e:
            logger.error("delete_positions_failed", tender_id=tender_id, error=str(e))
            raise storage_error("delete", e, {"tender_id": tender_id})

        logger.info("positions_deleted", tender_id=tender_id)

    def _row_to_position(self, row: dict) -> Position:
        """Convert database row to Position."""
        return Position(
            id=row["id"],
            tender_id=row["tender_id"],
            number=row.get("item_no"),
            name=row.get("work_name") or "",
            unit=row.get("unit"),
            volume=row.get("volume"),
            note=row.get("client_note"),
            kind=row.get("position_type"),
            is_additional=bool(row.get("is_additional")),
            sort_order=row.get("position_number") or 0,
            hierarchy_level=row.get("hierarchy_level"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_position_repository: Optional[PositionRepository] = None


def get_position_repository() -> PositionRepository:
    """Get or create PositionRepository instance."""
    global _position_repository
    if _position_repository is None:
        _position_repository = PositionRepository()
    return _position_repository
