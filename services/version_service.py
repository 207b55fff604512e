"""
Tender version service.

Creates new versions of a tender, uploads their positions and runs the
match-then-transfer pipeline against the previous version.
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import ValidationError as PydanticValidationError
import structlog

from models.mapping import MappingStatistics, MatchingOptions
from models.position import Position, PositionCreate, PositionRow, normalize_position_kind
from models.tender import Tender, VersionComparison, VersionInfo, VersionUploadResult
from exceptions import AppError, PositionUploadError, ValidationError
from repositories import get_position_repository, get_tender_repository
from services.matching_service import MatchingService, get_matching_service
from services.transfer_service import TransferService, get_transfer_service
from utils.text_utils import clean_text, normalize_number

logger = structlog.get_logger(__name__)

DRAFT_STATUS = "draft"
COPIED_TENDER_FIELDS = ("title", "tender_number", "client_name", "description")


class VersionService:
    """Tender version lifecycle."""

    def __init__(
        self,
        tender_repository=None,
        position_repository=None,
        matching_service: Optional[MatchingService] = None,
        transfer_service: Optional[TransferService] = None
    ):
        self.tenders = tender_repository or get_tender_repository()
        self.positions = position_repository or get_position_repository()
        self.matching = matching_service or get_matching_service()
        self.transfer = transfer_service or get_transfer_service()

    # ===================
    # VERSIONS
    # ===================

    def create_new_version(self, parent_tender_id: str) -> Tender:
        """
        Create the next version of a tender.

        The new tender copies the parent's descriptive fields and gets
        the family's highest version number plus one.

        Raises:
            TenderNotFoundError: If the parent doesn't exist
        """
        parent = self.tenders.get(parent_tender_id)
        family = self.get_version_history(parent_tender_id)
        next_version = max((t.version for t in family), default=parent.version) + 1

        data = {field: getattr(parent, field) for field in COPIED_TENDER_FIELDS}
        data.update({
            "parent_version_id": parent.id,
            "version": next_version,
            "version_status": DRAFT_STATUS,
            "version_created_at": datetime.now(timezone.utc).isoformat(),
        })

        tender = self.tenders.create(data)

        logger.info(
            "tender_version_created",
            tender_id=tender.id,
            parent_tender_id=parent.id,
            version=next_version
        )
        return tender

    def check_if_version(self, tender_id: str) -> VersionInfo:
        """Whether a tender was created as a version of another one."""
        tender = self.tenders.get(tender_id)
        return VersionInfo(
            is_version=tender.parent_version_id is not None,
            parent_tender_id=tender.parent_version_id,
            version=tender.version,
        )

    def get_version_history(self, tender_id: str) -> list[Tender]:
        """
        All versions in the tender's family, oldest first.

        Walks up to the root version, then collects every descendant.
        """
        root = self.tenders.get(tender_id)
        seen = {root.id}
        while root.parent_version_id and root.parent_version_id not in seen:
            root = self.tenders.get(root.parent_version_id)
            seen.add(root.id)

        family = [root]
        visited = {root.id}
        queue = [root.id]
        while queue:
            parent_id = queue.pop(0)
            for child in self.tenders.list_children(parent_id):
                if child.id in visited:
                    continue
                visited.add(child.id)
                family.append(child)
                queue.append(child.id)

        return sorted(family, key=lambda t: t.version)

    # ===================
    # POSITIONS
    # ===================

    def validate_rows(self, rows: list[PositionRow]) -> list[PositionCreate]:
        """
        Turn raw rows into positions to create.

        Rows sharing a number keep the last one. Sort order is assigned
        from 1 in upload order.

        Raises:
            PositionUploadError: With one entry per invalid row
        """
        errors = []
        by_number: dict[str, PositionRow] = {}

        for index, row in enumerate(rows, start=1):
            number = normalize_number(row.number)
            name = clean_text(row.name)

            if not number:
                errors.append({"row": index, "field": "number", "error": "Position number is required"})
                continue
            if not name:
                errors.append({"row": index, "number": number, "field": "name", "error": "Work name is required"})
                continue

            if number in by_number:
                logger.debug("duplicate_position_number", row=index, number=number)
            by_number[number] = row.model_copy(update={"number": number, "name": name})

        creates = []
        for sort_order, (number, row) in enumerate(by_number.items(), start=1):
            try:
                creates.append(PositionCreate(
                    number=number,
                    name=row.name,
                    unit=clean_text(row.unit, max_length=50),
                    volume=row.volume or 0,
                    note=clean_text(row.note),
                    kind=normalize_position_kind(row.kind),
                    is_additional=row.is_additional,
                    sort_order=sort_order,
                ))
            except PydanticValidationError as e:
                errors.append({"number": number, "field": "row", "error": str(e)})

        if errors:
            logger.warning("position_upload_rejected", errors=len(errors))
            raise PositionUploadError(errors)

        return creates

    def upload_positions(self, tender_id: str, rows: list[PositionRow]) -> list[Position]:
        """
        Validate rows and create them as positions of a tender.

        Nothing is written if any row is invalid.
        """
        self.tenders.get(tender_id)
        creates = self.validate_rows(rows)

        positions = [self.positions.create(tender_id, data) for data in creates]

        logger.info("positions_uploaded", tender_id=tender_id, count=len(positions))
        return positions

    # ===================
    # PIPELINE
    # ===================

    def upload_as_new_version(
        self,
        parent_tender_id: str,
        rows: list[PositionRow],
        auto_match: bool = True,
        options: Optional[MatchingOptions] = None
    ) -> VersionUploadResult:
        """
        Create a version, upload its positions and carry data over.

        1. Create the next version of parent_tender_id
        2. Upload positions (the version is removed again if that fails)
        3. If auto_match: match against the parent, save, apply

        A failing transfer leaves the version and mappings in place, since
        apply can be retried; the result then has transfer=None.

        Raises:
            ValidationError: If no valid rows were supplied
            PositionUploadError: If any row is invalid
        """
        tender = self.create_new_version(parent_tender_id)

        try:
            positions = self.upload_positions(tender.id, rows)
            if not positions:
                raise ValidationError(
                    "No valid positions in upload",
                    code="EMPTY_UPLOAD",
                    details={"rows": len(rows)}
                )
        except AppError:
            self._discard_version(tender.id)
            raise

        result = VersionUploadResult(tender_id=tender.id, positions_count=len(positions))

        if not auto_match:
            return result

        mappings = self.matching.auto_match(parent_tender_id, tender.id, options)
        mappings = self.matching.save_mappings(tender.id, mappings)

        stats = MappingStatistics.of(mappings)
        result.mappings = mappings
        result.matched_count = stats.matched
        result.new_count = stats.new
        result.deleted_count = stats.deleted
        result.additional_count = stats.additional

        auto_confirm = options.auto_confirm_threshold if options else None
        try:
            result.transfer = self.transfer.apply_all(tender.id, auto_confirm_threshold=auto_confirm)
            result.mappings = self.matching.get_mappings(tender.id)
        except AppError as e:
            logger.error(
                "version_transfer_failed",
                tender_id=tender.id,
                error=str(e),
                error_code=e.code
            )

        logger.info(
            "version_uploaded",
            tender_id=tender.id,
            parent_tender_id=parent_tender_id,
            positions=result.positions_count,
            matched=result.matched_count,
            new=result.new_count,
            deleted=result.deleted_count
        )
        return result

    def compare_versions(self, old_tender_id: str, new_tender_id: str) -> VersionComparison:
        """
        Position differences between two versions, keyed by work name.

        Modified means the same name with a different unit or volume.
        """
        old_by_name = {p.name: p for p in self.positions.list(old_tender_id)}
        new_positions = self.positions.list(new_tender_id)
        new_by_name = {p.name: p for p in new_positions}

        added = [name for name in new_by_name if name not in old_by_name]
        removed = [name for name in old_by_name if name not in new_by_name]
        modified = [
            name for name, old in old_by_name.items()
            if name in new_by_name
            and (old.unit != new_by_name[name].unit or old.volume != new_by_name[name].volume)
        ]

        return VersionComparison(
            added=len(added),
            removed=len(removed),
            modified=len(modified),
            total=len(new_positions),
        )

    def _discard_version(self, tender_id: str) -> None:
        logger.warning("discarding_empty_version", tender_id=tender_id)
        self.positions.delete_for_tender(tender_id)
        self.tenders.delete(tender_id)


# Singleton instance
_version_service: Optional[VersionService] = None


def get_version_service() -> VersionService:
    """Get or create VersionService instance."""
    global _version_service
    if _version_service is None:
        _version_service = VersionService()
    return _version_service
