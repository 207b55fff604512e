"""
Unit tests for the auto-matching pass and MatchingService.

Run: pytest tests/unit/test_matching_service.py -v
"""

import pytest

from models.mapping import MappingStatus, MappingType, MatchingOptions, MappingAction
from services.matching_service import (
    MatchingService,
    ensure_exclusive,
    find_exclusivity_violations,
    match_positions,
    split_valid_positions,
)
from exceptions import MappingConflictError, TenderNotFoundError
from tests.factories import MappingFactory, PositionFactory, TenderFactory


OLD = "t-old"
NEW = "t-new"


def by_type(mappings, mapping_type):
    return [m for m in mappings if m.mapping_type == mapping_type]


# ===================
# MATCHING PASS
# ===================

class TestMatchPositions:
    """Tests for match_positions()"""

    def test_end_to_end_scenario(self):
        """Should match Фундамент, delete Стены and add Крыша."""
        old = [
            PositionFactory.create(OLD, number="1", name="Фундамент", volume=10, sort_order=1),
            PositionFactory.create(OLD, number="2", name="Стены", volume=20, sort_order=2),
        ]
        new = [
            PositionFactory.create(NEW, number="1", name="Фундамент", volume=12, sort_order=1),
            PositionFactory.create(NEW, number="3", name="Крыша", volume=5, sort_order=2),
        ]

        mappings = match_positions(OLD, NEW, old, new)

        assert len(mappings) == 3

        exact = mappings[0]
        assert exact.mapping_type == MappingType.EXACT
        assert exact.status == MappingStatus.CONFIRMED
        assert exact.old_position_id == old[0].id
        assert exact.new_position_id == new[0].id
        assert exact.action == MappingAction.COPY_CHILDREN

        deleted = mappings[1]
        assert deleted.mapping_type == MappingType.DELETED
        assert deleted.old_position_id == old[1].id
        assert deleted.new_position is None

        created = mappings[2]
        assert created.mapping_type == MappingType.NEW
        assert created.new_position_id == new[1].id
        assert created.old_position is None

    def test_deterministic(self):
        """Should produce identical mappings for identical input."""
        old = PositionFactory.create_batch(OLD, ["Фундамент", "Стены", "Кровля", "Окна"])
        new = PositionFactory.create_batch(NEW, ["Фундамент ленточный", "Кровля", "Стены", "Двери"])

        first = match_positions(OLD, NEW, old, new)
        second = match_positions(OLD, NEW, old, new)

        assert [m.model_dump() for m in first] == [m.model_dump() for m in second]

    def test_bijection(self):
        """Should claim each new position at most once and account for every position."""
        old = PositionFactory.create_batch(OLD, ["Монтаж окон", "Монтаж окон", "Монтаж дверей", "Покраска"])
        new = PositionFactory.create_batch(NEW, ["Монтаж окон", "Монтаж дверей", "Штукатурка"])

        mappings = match_positions(OLD, NEW, old, new)

        matched = [m for m in mappings if m.is_matched]
        claimed = [m.new_position_id for m in matched]
        assert len(claimed) == len(set(claimed))
        assert len(matched) + len(by_type(mappings, MappingType.NEW)) == len(new)
        assert len(matched) + len(by_type(mappings, MappingType.DELETED)) == len(old)

    def test_fuzzy_between_thresholds(self):
        """Should suggest a fuzzy match for scores in [0.5, 0.9)."""
        old = [PositionFactory.create(OLD, number="1", name="Монтаж окон")]
        new = [PositionFactory.create(NEW, number="1", name="Монтаж окон ПВХ")]

        mapping = match_positions(OLD, NEW, old, new)[0]

        assert mapping.mapping_type == MappingType.FUZZY
        assert mapping.status == MappingStatus.SUGGESTED
        assert 0.5 <= mapping.confidence < 0.9
        assert mapping.text_score == 0.8

    def test_below_threshold_is_no_match(self):
        """Should mark both sides deleted/new when the best score is below 0.5."""
        old = [PositionFactory.create(OLD, number="1", name="abc")]
        new = [PositionFactory.create(NEW, number="9", name="xyz")]

        mappings = match_positions(OLD, NEW, old, new)

        assert [m.mapping_type for m in mappings] == [MappingType.DELETED, MappingType.NEW]

    def test_threshold_is_inclusive(self):
        """Should accept a score exactly equal to the match threshold."""
        old = [PositionFactory.create(OLD, number="1", name="abc")]
        new = [PositionFactory.create(NEW, number="1", name="xyz")]
        options = MatchingOptions(match_threshold=0.4)

        mapping = match_positions(OLD, NEW, old, new, options)[0]

        # text 0.0, context 1.0, type 1.0 → 0.3 + 0.1
        assert mapping.confidence == 0.4
        assert mapping.mapping_type == MappingType.FUZZY

    def test_first_old_position_claims_first(self):
        """Should let earlier old positions win ties for the same new position."""
        old = [
            PositionFactory.create(OLD, number=None, name="Монтаж окон", sort_order=1),
            PositionFactory.create(OLD, number=None, name="Монтаж окон", sort_order=2),
        ]
        new = [PositionFactory.create(NEW, number=None, name="Монтаж окон")]

        mappings = match_positions(OLD, NEW, old, new)

        assert mappings[0].old_position_id == old[0].id
        assert mappings[0].is_matched
        assert mappings[1].mapping_type == MappingType.DELETED

    def test_ties_go_to_earlier_candidate(self):
        """Should pick the first of equally scored new positions."""
        old = [PositionFactory.create(OLD, number=None, name="Покраска")]
        new = [
            PositionFactory.create(NEW, number=None, name="Покраска", sort_order=1),
            PositionFactory.create(NEW, number=None, name="Покраска", sort_order=2),
        ]

        mappings = match_positions(OLD, NEW, old, new)

        assert mappings[0].new_position_id == new[0].id
        assert mappings[1].new_position_id == new[1].id
        assert mappings[1].mapping_type == MappingType.NEW

    def test_additional_positions_skip_matching(self):
        """Should give additional positions their own mappings."""
        old = [
            PositionFactory.create(OLD, number="1", name="Фундамент"),
            PositionFactory.create(OLD, number="ДОП 1", name="Фундамент", is_additional=True),
        ]
        new = [PositionFactory.create(NEW, number="1", name="Фундамент")]

        mappings = match_positions(OLD, NEW, old, new)

        assert mappings[0].is_matched
        additional = by_type(mappings, MappingType.ADDITIONAL)
        assert len(additional) == 1
        assert additional[0].old_position_id == old[1].id
        assert additional[0].action == MappingAction.PRESERVE_ADDITIONAL

    def test_confidence_capped_at_one(self):
        """Should clamp confidence when weights sum above 1."""
        old = [PositionFactory.create(OLD, number="1", name="Фундамент")]
        new = [PositionFactory.create(NEW, number="1", name="Фундамент")]
        options = MatchingOptions(text_weight=1.0, context_weight=1.0, type_weight=1.0)

        mapping = match_positions(OLD, NEW, old, new, options)[0]

        assert mapping.confidence == 1.0


class TestSplitValidPositions:
    """Tests for split_valid_positions()"""

    def test_rejects_blank_names(self):
        """Should reject positions without a name."""
        good = PositionFactory.create(OLD, name="Фундамент")
        blank = PositionFactory.create(OLD, name="   ")

        valid, rejected = split_valid_positions([good, blank])

        assert valid == [good]
        assert rejected == [blank]


class TestExclusivity:
    """Tests for find_exclusivity_violations() and ensure_exclusive()"""

    def test_detects_double_claim(self):
        old_a = PositionFactory.create(OLD)
        old_b = PositionFactory.create(OLD)
        new = PositionFactory.create(NEW)
        mappings = [
            MappingFactory.matched(old_a, new, id="map-a"),
            MappingFactory.matched(old_b, new, id="map-b"),
        ]

        assert find_exclusivity_violations(mappings) == {new.id: ["map-a", "map-b"]}
        with pytest.raises(MappingConflictError):
            ensure_exclusive(mappings)

    def test_additional_mappings_are_exempt(self):
        """Should ignore additional mappings."""
        old = PositionFactory.create(OLD)
        new = PositionFactory.create(NEW)
        additional = MappingFactory.additional(old, NEW)
        additional.new_position = MappingFactory.new_position(OLD, new).new_position

        ensure_exclusive([MappingFactory.matched(old, new), additional])


# ===================
# SERVICE
# ===================

@pytest.fixture
def service(repos):
    repos.tenders.add(TenderFactory.create(id=OLD))
    repos.tenders.add(TenderFactory.create(id=NEW, version=2, parent_version_id=OLD))
    return MatchingService(
        position_repository=repos.positions,
        mapping_repository=repos.mappings,
        tender_repository=repos.tenders,
    )


class TestMatchingService:
    """Tests for MatchingService"""

    def test_auto_match_reads_stored_positions(self, service, repos):
        """Should match the stored positions of both tenders."""
        repos.positions.add(PositionFactory.create(OLD, number="1", name="Фундамент"))
        repos.positions.add(PositionFactory.create(NEW, number="1", name="Фундамент"))

        mappings = service.auto_match(OLD, NEW)

        assert len(mappings) == 1
        assert mappings[0].mapping_type == MappingType.EXACT
        assert mappings[0].persisted is False

    def test_auto_match_skips_blank_names(self, service, repos):
        """Should leave nameless positions out of matching."""
        repos.positions.add(PositionFactory.create(OLD, number="1", name=""))
        repos.positions.add(PositionFactory.create(NEW, number="1", name="Фундамент"))

        mappings = service.auto_match(OLD, NEW)

        assert [m.mapping_type for m in mappings] == [MappingType.NEW]

    def test_auto_match_unknown_tender(self, service):
        with pytest.raises(TenderNotFoundError):
            service.auto_match(OLD, "t-missing")

    def test_save_mappings_assigns_ids(self, service, repos):
        repos.positions.add(PositionFactory.create(OLD, number="1", name="Фундамент"))
        repos.positions.add(PositionFactory.create(NEW, number="1", name="Фундамент"))

        saved = service.save_mappings(NEW, service.auto_match(OLD, NEW))

        assert all(m.persisted for m in saved)
        assert len(repos.mappings.list(NEW)) == 1

    def test_save_mappings_refuses_to_overwrite(self, service, repos):
        """Should refuse to save over existing mappings unless replacing."""
        old = repos.positions.add(PositionFactory.create(OLD))
        new = repos.positions.add(PositionFactory.create(NEW))
        repos.mappings.add(MappingFactory.matched(old, new))

        with pytest.raises(MappingConflictError):
            service.save_mappings(NEW, service.auto_match(OLD, NEW))

    def test_save_mappings_replace(self, service, repos):
        """Should replace unapplied mappings when asked to."""
        old = repos.positions.add(PositionFactory.create(OLD, name="Фундамент"))
        new = repos.positions.add(PositionFactory.create(NEW, name="Фундамент"))
        repos.mappings.add(MappingFactory.matched(old, new, status=MappingStatus.REJECTED))

        saved = service.save_mappings(NEW, service.auto_match(OLD, NEW), replace=True)

        stored = repos.mappings.list(NEW)
        assert [m.id for m in stored] == [m.id for m in saved]
        assert stored[0].status == MappingStatus.CONFIRMED

    def test_save_mappings_keeps_applied(self, service, repos):
        """Should not replace a mapping set that has been applied."""
        old = repos.positions.add(PositionFactory.create(OLD))
        new = repos.positions.add(PositionFactory.create(NEW))
        repos.mappings.add(MappingFactory.matched(old, new, status=MappingStatus.APPLIED))

        with pytest.raises(MappingConflictError):
            service.save_mappings(NEW, service.auto_match(OLD, NEW), replace=True)

    def test_get_mappings_sorted_by_confidence(self, service, repos):
        old = repos.positions.add(PositionFactory.create(OLD))
        new_a = repos.positions.add(PositionFactory.create(NEW))
        new_b = repos.positions.add(PositionFactory.create(NEW))
        repos.mappings.add(MappingFactory.matched(old, new_a, confidence=0.6))
        repos.mappings.add(MappingFactory.matched(old, new_b, confidence=0.95))

        mappings = service.get_mappings(NEW)

        assert [m.confidence for m in mappings] == [0.95, 0.6]
