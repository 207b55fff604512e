"""
Auto-matching of positions between two tender versions.

The pass is greedy and order-dependent: old positions are visited in
listing order and each claims its best unclaimed new position. Changing
the traversal order changes the result.
"""

from typing import Optional
import structlog

from config import settings
from models.mapping import (
    Mapping,
    MappingAction,
    MappingStatistics,
    MappingStatus,
    MappingType,
    MatchingOptions,
    PositionSnapshot,
)
from models.position import Position
from exceptions import MappingConflictError
from repositories import (
    get_mapping_repository,
    get_position_repository,
    get_tender_repository,
)
from services.similarity_service import MatchScore, composite_score

logger = structlog.get_logger(__name__)


# ===================
# PURE FUNCTIONS
# ===================

def split_valid_positions(positions: list[Position]) -> tuple[list[Position], list[Position]]:
    """
    Separate positions that can be matched from malformed ones.

    A position without a name cannot be compared and is rejected.

    Returns:
        (valid, rejected), both in input order
    """
    valid, rejected = [], []
    for position in positions:
        if position.name and position.name.strip():
            valid.append(position)
        else:
            rejected.append(position)
            logger.warning(
                "position_rejected",
                position_id=position.id,
                tender_id=position.tender_id,
                number=position.number,
                reason="missing name"
            )
    return valid, rejected


def match_positions(
    old_tender_id: str,
    new_tender_id: str,
    old_positions: list[Position],
    new_positions: list[Position],
    options: Optional[MatchingOptions] = None
) -> list[Mapping]:
    """
    Pair old positions with new ones.

    1. Each old position (in order) is scored against every unclaimed new
       position; the best one wins, ties going to the earlier candidate.
    2. best >= match_threshold: claimed; exact + confirmed when
       best >= auto_confirm_threshold, fuzzy + suggested otherwise.
    3. Below threshold: the old position is marked deleted.
    4. Unclaimed new positions are marked new.
    Additional positions never take part and get their own mappings.

    Args:
        old_tender_id: Previous version
        new_tender_id: New version
        old_positions: Previous version's positions, in listing order
        new_positions: New version's positions, in listing order
        options: Weights and thresholds

    Returns:
        Unsaved mappings: matched/deleted in old order, then new ones in
        new order, then additional ones
    """
    options = options or MatchingOptions()

    old_regular = [p for p in old_positions if not p.is_additional]
    new_regular = [p for p in new_positions if not p.is_additional]

    claimed: set[str] = set()
    mappings: list[Mapping] = []

    for old in old_regular:
        best: Optional[Position] = None
        best_score: Optional[MatchScore] = None

        for candidate in new_regular:
            if candidate.id in claimed:
                continue

            score = composite_score(old, candidate, options)

            if best_score is None or score.total > best_score.total:
                best = candidate
                best_score = score

        if best is not None and best_score.total >= options.match_threshold:
            claimed.add(best.id)
            is_exact = best_score.total >= options.auto_confirm_threshold

            mappings.append(Mapping(
                old_tender_id=old_tender_id,
                new_tender_id=new_tender_id,
                old_position=PositionSnapshot.of(old),
                new_position=PositionSnapshot.of(best),
                mapping_type=MappingType.EXACT if is_exact else MappingType.FUZZY,
                confidence=min(best_score.total, 1.0),
                text_score=best_score.text,
                context_score=best_score.context,
                type_score=best_score.type,
                status=MappingStatus.CONFIRMED if is_exact else MappingStatus.SUGGESTED,
                action=MappingAction.COPY_CHILDREN,
            ))
        else:
            mappings.append(Mapping(
                old_tender_id=old_tender_id,
                new_tender_id=new_tender_id,
                old_position=PositionSnapshot.of(old),
                mapping_type=MappingType.DELETED,
                confidence=0.0,
                status=MappingStatus.SUGGESTED,
                action=MappingAction.DELETE,
            ))

    for new in new_regular:
        if new.id not in claimed:
            mappings.append(new_position_mapping(old_tender_id, new_tender_id, PositionSnapshot.of(new)))

    for old in old_positions:
        if old.is_additional:
            mappings.append(Mapping(
                old_tender_id=old_tender_id,
                new_tender_id=new_tender_id,
                old_position=PositionSnapshot.of(old),
                mapping_type=MappingType.ADDITIONAL,
                action=MappingAction.PRESERVE_ADDITIONAL,
            ))

    for new in new_positions:
        if new.is_additional:
            mappings.append(Mapping(
                old_tender_id=old_tender_id,
                new_tender_id=new_tender_id,
                new_position=PositionSnapshot.of(new),
                mapping_type=MappingType.ADDITIONAL,
                action=MappingAction.PRESERVE_ADDITIONAL,
            ))

    return mappings


def new_position_mapping(
    old_tender_id: str,
    new_tender_id: str,
    position: PositionSnapshot
) -> Mapping:
    """Mapping that represents a new-version position nobody claimed."""
    return Mapping(
        old_tender_id=old_tender_id,
        new_tender_id=new_tender_id,
        new_position=position,
        mapping_type=MappingType.NEW,
        confidence=0.0,
        status=MappingStatus.SUGGESTED,
        action=MappingAction.CREATE_NEW,
    )


def find_exclusivity_violations(mappings: list[Mapping]) -> dict[str, list[Optional[str]]]:
    """
    New positions referenced by more than one non-additional mapping.

    Returns:
        {new_position_id: [mapping ids]} for every violation
    """
    holders: dict[str, list[Optional[str]]] = {}
    for m in mappings:
        if m.is_additional or m.new_position_id is None:
            continue
        holders.setdefault(m.new_position_id, []).append(m.id)

    return {pid: ids for pid, ids in holders.items() if len(ids) > 1}


def ensure_exclusive(mappings: list[Mapping]) -> None:
    """
    Raise if a new position is claimed twice.

    Raises:
        MappingConflictError: With the offending position ids
    """
    violations = find_exclusivity_violations(mappings)
    if violations:
        logger.error("mapping_exclusivity_violated", positions=list(violations.keys()))
        raise MappingConflictError(
            f"{len(violations)} new position(s) claimed by more than one mapping",
            details={"violations": violations}
        )


# ===================
# SERVICE
# ===================

class MatchingService:
    """
    Runs the auto-matching pass against stored tenders and stores the result.
    """

    def __init__(
        self,
        position_repository=None,
        mapping_repository=None,
        tender_repository=None
    ):
        self.positions = position_repository or get_position_repository()
        self.mappings = mapping_repository or get_mapping_repository()
        self.tenders = tender_repository or get_tender_repository()

    def auto_match(
        self,
        old_tender_id: str,
        new_tender_id: str,
        options: Optional[MatchingOptions] = None
    ) -> list[Mapping]:
        """
        Compute mappings between two stored tender versions.

        Nothing is written; see save_mappings().

        Args:
            old_tender_id: Previous version
            new_tender_id: New version
            options: Weights and thresholds (defaults from settings)

        Returns:
            Unsaved mappings

        Raises:
            TenderNotFoundError: If either tender doesn't exist
        """
        options = options or MatchingOptions.from_settings(settings)

        self.tenders.get(old_tender_id)
        self.tenders.get(new_tender_id)

        old_positions, _ = split_valid_positions(self.positions.list(old_tender_id))
        new_positions, _ = split_valid_positions(self.positions.list(new_tender_id))

        logger.info(
            "auto_match_started",
            old_tender_id=old_tender_id,
            new_tender_id=new_tender_id,
            old_positions=len(old_positions),
            new_positions=len(new_positions)
        )

        mappings = match_positions(
            old_tender_id,
            new_tender_id,
            old_positions,
            new_positions,
            options
        )

        stats = MappingStatistics.of(mappings)
        logger.info(
            "auto_match_completed",
            new_tender_id=new_tender_id,
            exact=stats.exact,
            fuzzy=stats.fuzzy,
            new=stats.new,
            deleted=stats.deleted,
            additional=stats.additional
        )

        return mappings

    def save_mappings(
        self,
        new_tender_id: str,
        mappings: list[Mapping],
        replace: bool = False
    ) -> list[Mapping]:
        """
        Store a freshly computed mapping set.

        Args:
            new_tender_id: Tender the mappings belong to
            mappings: Unsaved mappings
            replace: Discard existing non-applied mappings first

        Returns:
            Stored mappings with ids

        Raises:
            MappingConflictError: If the set claims a position twice, if
                mappings already exist and replace is False, or if replacing
                would drop an applied mapping
        """
        ensure_exclusive(mappings)

        existing = self.mappings.list(new_tender_id)

        if existing and not replace:
            raise MappingConflictError(
                "Mappings already exist for this tender",
                details={"new_tender_id": new_tender_id, "existing": len(existing)}
            )

        if existing:
            applied = [m for m in existing if m.status == MappingStatus.APPLIED]
            if applied:
                raise MappingConflictError(
                    "Cannot replace mappings that have already been applied",
                    details={"new_tender_id": new_tender_id, "applied": len(applied)}
                )
            self.mappings.delete_for_tender(new_tender_id)

        logger.info("saving_mappings", new_tender_id=new_tender_id, count=len(mappings))

        return self.mappings.insert_many(mappings)

    def get_mappings(self, new_tender_id: str) -> list[Mapping]:
        """Stored mappings of a tender, highest confidence first."""
        mappings = self.mappings.list(new_tender_id)
        return sorted(mappings, key=lambda m: m.confidence, reverse=True)

    def statistics(self, mappings: list[Mapping]) -> MappingStatistics:
        """Counts by type and status."""
        return MappingStatistics.of(mappings)


# Singleton instance
_matching_service: Optional[MatchingService] = None


def get_matching_service() -> MatchingService:
    """Get or create MatchingService instance."""
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service
