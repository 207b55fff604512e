"""
Manual reconciliation of version mappings.

Reviewers confirm, reject or re-point mappings. Re-pointing touches up to
three mappings (the one being edited, the one that held the position, and
a synthesized mapping for a position left unclaimed); the change set is
computed over the tender's whole mapping set, checked, and committed in
one transaction.
"""

from typing import Optional
import structlog

from models.mapping import (
    Mapping,
    MappingAction,
    MappingChangeset,
    MappingStatus,
    MappingType,
    PositionSnapshot,
    is_valid_status_transition,
)
from exceptions import (
    InvalidPositionError,
    InvalidStatusTransitionError,
    MappingConflictError,
    ValidationError,
)
from repositories import get_mapping_repository, get_position_repository
from services.matching_service import ensure_exclusive, new_position_mapping

logger = structlog.get_logger(__name__)

REVIEW_STATUSES = {MappingStatus.CONFIRMED, MappingStatus.REJECTED}


class ReconciliationService:
    """
    Review operations on stored mappings.

    Keeps two invariants: every non-additional new position is referenced
    by exactly one mapping, and every old position stays represented.
    """

    def __init__(self, mapping_repository=None, position_repository=None):
        self.mappings = mapping_repository or get_mapping_repository()
        self.positions = position_repository or get_position_repository()

    # ===================
    # STATUS
    # ===================

    def set_status(self, mapping_id: str, status: MappingStatus) -> Mapping:
        """
        Confirm or reject a mapping.

        Setting the status a mapping already has is a no-op.

        Raises:
            ValidationError: If status is not confirmed or rejected
            MappingNotFoundError: If the mapping doesn't exist
            InvalidStatusTransitionError: If the mapping is applied
        """
        if status not in REVIEW_STATUSES:
            raise ValidationError(
                code="INVALID_REVIEW_STATUS",
                message="Status must be confirmed or rejected",
                details={"provided": status.value, "valid": [s.value for s in REVIEW_STATUSES]}
            )

        mapping = self.mappings.get(mapping_id)

        if mapping.status == status:
            return mapping

        if not is_valid_status_transition(mapping.status, status):
            raise InvalidStatusTransitionError(mapping.status.value, status.value)

        self.mappings.update_status(mapping_id, status)
        mapping.status = status

        logger.info("mapping_status_updated", mapping_id=mapping_id, status=status.value)

        return mapping

    def confirm(self, mapping_id: str) -> Mapping:
        return self.set_status(mapping_id, MappingStatus.CONFIRMED)

    def reject(self, mapping_id: str) -> Mapping:
        return self.set_status(mapping_id, MappingStatus.REJECTED)

    # ===================
    # REASSIGN
    # ===================

    def reassign(self, mapping_id: str, new_position_id: Optional[str]) -> Mapping:
        """
        Point a mapping at another new-version position, or at none.

        1. A different mapping holding the position is removed if it only
           represented the orphan position (type new), otherwise it is freed
           and becomes a deleted suggestion.
        2. The mapping becomes manual/confirmed/copy (or deleted/suggested
           when new_position_id is None).
        3. The position the mapping held before gets a new mapping if
           nothing else claims it any more.
        4. All of it is committed at once.

        Args:
            mapping_id: Mapping to change
            new_position_id: Target new-version position, None to unbind

        Returns:
            The changed mapping

        Raises:
            MappingNotFoundError: If the mapping doesn't exist
            PositionNotFoundError: If the target position doesn't exist
            InvalidStatusTransitionError: If the mapping is applied
            InvalidPositionError: If either side cannot take part
            MappingConflictError: If the position is held by an applied mapping
        """
        target = self.mappings.get(mapping_id)

        if target.status == MappingStatus.APPLIED:
            raise InvalidStatusTransitionError(target.status.value, MappingType.MANUAL.value)

        if target.is_additional or target.old_position is None:
            raise InvalidPositionError(
                target.new_position_id,
                "Only mappings of an old-version position can be reassigned"
            )

        new_snapshot = self._resolve_target_position(target, new_position_id)

        working = {
            m.id: m.model_copy(deep=True)
            for m in self.mappings.list(target.new_tender_id)
        }
        target = working.get(mapping_id) or target.model_copy(deep=True)
        working[mapping_id] = target

        previous = target.new_position
        changeset = MappingChangeset()

        # Step 1: release the position from whoever holds it
        if new_position_id is not None:
            holders = [
                m for m in working.values()
                if m.id != mapping_id
                and not m.is_additional
                and m.new_position_id == new_position_id
            ]
            for holder in holders:
                if holder.status == MappingStatus.APPLIED:
                    raise MappingConflictError(
                        "Position is held by a mapping that has already been applied",
                        details={"position_id": new_position_id, "mapping_id": holder.id}
                    )

                if holder.mapping_type == MappingType.NEW:
                    changeset.deletes.append(holder.id)
                    del working[holder.id]
                    logger.debug("orphan_mapping_removed", mapping_id=holder.id)
                else:
                    holder.clear_new_side()
                    holder.mapping_type = MappingType.DELETED
                    holder.status = MappingStatus.SUGGESTED
                    holder.action = MappingAction.DELETE
                    changeset.upserts.append(holder)
                    logger.debug("mapping_freed", mapping_id=holder.id)

        # Step 2: update the mapping itself
        if new_snapshot is not None:
            target.new_position = new_snapshot
            target.mapping_type = MappingType.MANUAL
            target.confidence = 1.0
            target.text_score = None
            target.context_score = None
            target.type_score = None
            target.status = MappingStatus.CONFIRMED
            target.action = MappingAction.COPY_CHILDREN
        else:
            target.clear_new_side()
            target.mapping_type = MappingType.DELETED
            target.status = MappingStatus.SUGGESTED
            target.action = MappingAction.DELETE
        changeset.upserts.append(target)

        # Step 3: keep the previously held position represented
        resulting = list(working.values())
        if previous is not None and previous.id != new_position_id:
            still_claimed = any(
                m.new_position_id == previous.id and not m.is_additional
                for m in resulting
            )
            if not still_claimed:
                orphan = new_position_mapping(target.old_tender_id, target.new_tender_id, previous)
                changeset.upserts.append(orphan)
                resulting.append(orphan)
                logger.debug("orphan_mapping_created", position_id=previous.id)

        # Step 4: check and commit
        ensure_exclusive(resulting)
        self.mappings.commit(changeset)

        logger.info(
            "mapping_reassigned",
            mapping_id=mapping_id,
            new_position_id=new_position_id,
            previous_position_id=previous.id if previous else None,
            upserts=len(changeset.upserts),
            deletes=len(changeset.deletes)
        )

        return target

    def _resolve_target_position(
        self,
        mapping: Mapping,
        new_position_id: Optional[str]
    ) -> Optional[PositionSnapshot]:
        """Load and check the position a mapping is being pointed at."""
        if new_position_id is None:
            return None

        position = self.positions.get(new_position_id)

        if position.tender_id != mapping.new_tender_id:
            raise InvalidPositionError(
                new_position_id,
                "Position does not belong to the new tender version"
            )

        if position.is_additional:
            raise InvalidPositionError(
                new_position_id,
                "Additional positions are carried over as-is and cannot be matched"
            )

        return PositionSnapshot.of(position)


# Singleton instance
_reconciliation_service: Optional[ReconciliationService] = None


def get_reconciliation_service() -> ReconciliationService:
    """Get or create ReconciliationService instance."""
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService()
    return _reconciliation_service
