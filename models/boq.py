"""
BOQ item and work-material link schemas.

Both carry many pricing columns the transfer never interprets; they are
kept as extra fields and copied verbatim.
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional


# Columns that identify a row rather than describe it
IDENTITY_FIELDS = {"id", "created_at", "updated_at"}

# A copy remembers the row it was made from; together with the owning
# position this is unique, so repeating a copy returns the same row
ITEM_COPY_KEY = "client_position_id,source_item_id"
LINK_COPY_KEY = "client_position_id,source_link_id"

LINK_ENDPOINT_FIELDS = (
    "work_boq_item_id",
    "material_boq_item_id",
    "sub_work_boq_item_id",
    "sub_material_boq_item_id",
)


class BOQItem(BaseModel):
    """Priced line item owned by a client position."""

    model_config = ConfigDict(extra="allow")

    id: str
    tender_id: Optional[str] = None
    client_position_id: Optional[str] = None

    def copy_payload(self, new_position_id: str, new_tender_id: str) -> dict:
        """Row data for a copy of this item under another position."""
        data = self.model_dump(exclude=IDENTITY_FIELDS)
        data["client_position_id"] = new_position_id
        data["tender_id"] = new_tender_id
        data["source_item_id"] = self.id
        return data


class WorkMaterialLink(BaseModel):
    """Link between a work item and a material item of the same position."""

    model_config = ConfigDict(extra="allow")

    id: str
    client_position_id: Optional[str] = None
    work_boq_item_id: Optional[str] = None
    material_boq_item_id: Optional[str] = None
    sub_work_boq_item_id: Optional[str] = None
    sub_material_boq_item_id: Optional[str] = None

    def endpoints(self) -> dict[str, str]:
        """Non-empty endpoint columns."""
        return {
            field: getattr(self, field)
            for field in LINK_ENDPOINT_FIELDS
            if getattr(self, field)
        }

    def translated_payload(
        self,
        id_table: dict[str, str],
        new_position_id: str
    ) -> Optional[dict]:
        """
        Row data for a copy of this link with endpoints translated.

        Returns None when any endpoint has no entry in id_table (or the
        link has no endpoints at all), so a half-populated link is never
        produced.
        """
        endpoints = self.endpoints()
        if not endpoints:
            return None

        data = self.model_dump(exclude=IDENTITY_FIELDS)
        for field, old_id in endpoints.items():
            new_id = id_table.get(old_id)
            if new_id is None:
                return None
            data[field] = new_id

        data["client_position_id"] = new_position_id
        data["source_link_id"] = self.id
        return data
