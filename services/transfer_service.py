"""
Transfer of BOQ data from an old tender version to a new one.

Applies the mappings of a new tender. BOQ items and work-material links
of each confirmed old position are copied to its matched new position.
Additional positions missing from the new version are carried forward;
other mappings are only marked applied.

Mappings are processed on a bounded thread pool. A failing mapping is
recorded and left retryable while the others go on.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Optional
import threading
import time
import structlog

from config import settings
from models.mapping import Mapping, MappingAction, MappingStatus, PositionSnapshot
from models.position import PositionCreate, normalize_position_kind
from models.transfer import TransferError, TransferResult
from exceptions import AppError, NoPredecessorTenderError
from repositories import (
    get_boq_item_repository,
    get_link_repository,
    get_mapping_repository,
    get_position_repository,
)
from services.matching_service import ensure_exclusive
from utils.retry import with_retry

logger = structlog.get_logger(__name__)

JOB_COPY = "copy"
JOB_CARRY = "carry"
JOB_BOOKKEEPING = "bookkeeping"

BOOKKEEPING_ACTIONS = {
    MappingAction.CREATE_NEW,
    MappingAction.DELETE,
    MappingAction.PRESERVE_ADDITIONAL,
}


@dataclass
class ChildrenCopy:
    """Rows written while copying one position's children."""
    item_ids: list[str]
    link_ids: list[str]
    links_dropped: int = 0


@dataclass
class MappingOutcome:
    """Result of processing one mapping."""
    mapping: Mapping
    kind: str
    items: int = 0
    links: int = 0
    links_dropped: int = 0
    skipped: bool = False
    error: Optional[TransferError] = None


class TransferProgress:
    """Thread-safe processed/total counter."""

    def __init__(self, total: int, on_progress: Optional[Callable[[int, int], None]] = None):
        self._lock = threading.Lock()
        self.total = total
        self.processed = 0
        self._on_progress = on_progress

    def advance(self) -> int:
        with self._lock:
            self.processed += 1
            processed = self.processed
        if self._on_progress:
            self._on_progress(processed, self.total)
        return processed


class TransferRun:
    """Cancellation flag and progress of one apply_all call."""

    def __init__(
        self,
        new_tender_id: str,
        total: int,
        on_progress: Optional[Callable[[int, int], None]] = None
    ):
        self.new_tender_id = new_tender_id
        self.cancelled = threading.Event()
        self.progress = TransferProgress(total, on_progress)


class TransferService:
    """
    Applies the mappings of a new tender version.

    Storage calls are retried on transient failures; exhausted retries
    become an error entry for that mapping.
    """

    def __init__(
        self,
        mapping_repository=None,
        position_repository=None,
        item_repository=None,
        link_repository=None,
        max_workers: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mappings = mapping_repository or get_mapping_repository()
        self.positions = position_repository or get_position_repository()
        self.items = item_repository or get_boq_item_repository()
        self.links = link_repository or get_link_repository()

        self.max_workers = max_workers or settings.transfer_max_workers
        self.retry_attempts = retry_attempts or settings.storage_retry_attempts
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None
            else settings.storage_retry_base_delay
        )
        self._sleep = sleep
        self._runs: list[TransferRun] = []
        self._runs_lock = threading.Lock()

    def cancel(self, new_tender_id: Optional[str] = None) -> int:
        """
        Stop starting work for further mappings.

        Applies to running transfers of new_tender_id, or to all running
        transfers when it is None. Other runs are not affected.

        Returns:
            Number of runs cancelled
        """
        with self._runs_lock:
            runs = [
                run for run in self._runs
                if new_tender_id is None or run.new_tender_id == new_tender_id
            ]
        for run in runs:
            run.cancelled.set()

        logger.info("transfer_cancel_requested", new_tender_id=new_tender_id, runs=len(runs))
        return len(runs)

    # ===================
    # ENTRY POINT
    # ===================

    def apply_all(
        self,
        new_tender_id: str,
        auto_confirm_threshold: Optional[float] = None,
        on_progress: Optional[Callable[[int, int], None]] = None
    ) -> TransferResult:
        """
        Apply every pending mapping of a new tender version.

        1. Resolve the previous version from the mappings.
        2. Confirm suggestions scoring at or above auto_confirm_threshold.
        3. Copy items and links for confirmed copy mappings.
        4. Carry forward additional positions not yet in the new version.
        5. Mark new/deleted/additional mappings applied.

        Applied mappings are never touched again, so a second call after a
        successful run writes nothing.

        Args:
            new_tender_id: Tender whose mappings are applied
            auto_confirm_threshold: Defaults to settings.auto_confirm_threshold
            on_progress: Called with (processed, total) after each mapping

        Returns:
            TransferResult with counts and per-mapping errors

        Raises:
            NoPredecessorTenderError: If the tender has no mappings
            MappingConflictError: If a new position is claimed twice
        """
        threshold = (
            auto_confirm_threshold if auto_confirm_threshold is not None
            else settings.auto_confirm_threshold
        )

        old_tender_id = self._call(
            "find_predecessor",
            lambda: self.mappings.find_predecessor(new_tender_id)
        )
        if old_tender_id is None:
            raise NoPredecessorTenderError(new_tender_id)

        mappings = self._call("list_mappings", lambda: self.mappings.list(new_tender_id))
        ensure_exclusive(mappings)

        result = TransferResult(new_tender_id=new_tender_id, old_tender_id=old_tender_id)

        logger.info(
            "transfer_started",
            new_tender_id=new_tender_id,
            old_tender_id=old_tender_id,
            mappings=len(mappings)
        )

        self._auto_confirm(mappings, threshold, result)

        jobs = self._plan_jobs(mappings)
        carry_sort_orders = self._allocate_sort_orders(new_tender_id, jobs)

        run = TransferRun(new_tender_id, len(jobs), on_progress)
        outcomes: list[tuple[int, MappingOutcome]] = []

        with self._runs_lock:
            self._runs.append(run)
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(
                        self._run_job,
                        kind,
                        mapping,
                        carry_sort_orders.get(index),
                        run
                    ): index
                    for index, (kind, mapping) in enumerate(jobs)
                }
                for future in as_completed(futures):
                    outcomes.append((futures[future], future.result()))
        finally:
            with self._runs_lock:
                self._runs.remove(run)

        for _, outcome in sorted(outcomes, key=lambda pair: pair[0]):
            self._collect(outcome, result)

        logger.info(
            "transfer_completed",
            new_tender_id=new_tender_id,
            positions=result.positions_transferred,
            items=result.items_transferred,
            links=result.links_transferred,
            links_dropped=result.links_dropped,
            additional=result.additional_positions_transferred,
            bookkeeping=result.bookkeeping_applied,
            skipped=result.skipped,
            errors=len(result.errors)
        )

        return result

    # ===================
    # PLANNING
    # ===================

    def _auto_confirm(self, mappings: list[Mapping], threshold: float, result: TransferResult) -> None:
        """Confirm high-confidence suggestions in place."""
        for mapping in mappings:
            if mapping.status != MappingStatus.SUGGESTED or mapping.confidence < threshold:
                continue

            try:
                self._call(
                    "auto_confirm",
                    lambda m=mapping: self.mappings.update_status(m.id, MappingStatus.CONFIRMED)
                )
            except AppError as e:
                result.errors.append(self._error(mapping, e))
                continue

            mapping.status = MappingStatus.CONFIRMED
            result.auto_confirmed += 1

        if result.auto_confirmed:
            logger.info("mappings_auto_confirmed", count=result.auto_confirmed, threshold=threshold)

    def _plan_jobs(self, mappings: list[Mapping]) -> list[tuple[str, Mapping]]:
        """Decide what each pending mapping needs, in mapping order."""
        jobs = []
        for mapping in mappings:
            if mapping.status in (MappingStatus.APPLIED, MappingStatus.REJECTED):
                continue

            if mapping.action == MappingAction.COPY_CHILDREN:
                if mapping.status == MappingStatus.CONFIRMED:
                    jobs.append((JOB_COPY, mapping))
            elif (
                mapping.action == MappingAction.PRESERVE_ADDITIONAL
                and mapping.old_position is not None
                and mapping.new_position is None
            ):
                jobs.append((JOB_CARRY, mapping))
            elif mapping.action in BOOKKEEPING_ACTIONS:
                jobs.append((JOB_BOOKKEEPING, mapping))

        return jobs

    def _allocate_sort_orders(self, new_tender_id: str, jobs: list[tuple[str, Mapping]]) -> dict[int, int]:
        """Sort orders for carried-forward positions, after the existing ones."""
        carry_indexes = [index for index, (kind, _) in enumerate(jobs) if kind == JOB_CARRY]
        if not carry_indexes:
            return {}

        existing = self._call("list_positions", lambda: self.positions.list(new_tender_id))
        next_order = max((p.sort_order for p in existing), default=0) + 1

        return {index: next_order + offset for offset, index in enumerate(carry_indexes)}

    # ===================
    # WORKERS
    # ===================

    def _run_job(
        self,
        kind: str,
        mapping: Mapping,
        sort_order: Optional[int],
        run: TransferRun
    ) -> MappingOutcome:
        """Process one mapping; never raises."""
        outcome = MappingOutcome(mapping=mapping, kind=kind)

        if run.cancelled.is_set():
            outcome.skipped = True
            return outcome

        try:
            if kind == JOB_COPY:
                copied = self._apply_copy(mapping)
            elif kind == JOB_CARRY:
                copied = self._apply_carry(mapping, sort_order)
            else:
                copied = None
                self._call(
                    "mark_applied",
                    lambda: self.mappings.update_status(mapping.id, MappingStatus.APPLIED)
                )

            if copied is not None:
                outcome.items = len(copied.item_ids)
                outcome.links = len(copied.link_ids)
                outcome.links_dropped = copied.links_dropped

        except Exception as e:
            outcome.error = self._error(mapping, e)
            logger.error(
                "mapping_transfer_failed",
                mapping_id=mapping.id,
                kind=kind,
                error=str(e),
                error_type=type(e).__name__
            )
        finally:
            run.progress.advance()

        return outcome

    def _apply_copy(self, mapping: Mapping) -> ChildrenCopy:
        """Copy children of a matched position and mark the mapping applied."""
        if mapping.old_position is None or mapping.new_position is None:
            raise ValueError("Copy mapping needs both an old and a new position")

        copied = self._copy_children(
            mapping.old_position.id,
            mapping.new_position.id,
            mapping.new_tender_id
        )

        try:
            self._call(
                "mark_applied",
                lambda: self.mappings.update_status(mapping.id, MappingStatus.APPLIED)
            )
        except Exception:
            self._rollback(mapping, copied)
            raise

        logger.debug(
            "mapping_applied",
            mapping_id=mapping.id,
            items=len(copied.item_ids),
            links=len(copied.link_ids)
        )
        return copied

    def _apply_carry(self, mapping: Mapping, sort_order: int) -> ChildrenCopy:
        """Recreate an additional position in the new version with its children."""
        old = self._call("get_position", lambda: self.positions.get(mapping.old_position.id))

        data = PositionCreate(
            number=old.number or str(old.sort_order),
            name=old.name,
            unit=old.unit,
            volume=old.volume or 0,
            note=old.note,
            kind=normalize_position_kind(old.kind),
            is_additional=True,
            sort_order=sort_order,
        )
        created = self._call(
            "create_position",
            lambda: self.positions.create(mapping.new_tender_id, data)
        )

        try:
            copied = self._copy_children(old.id, created.id, mapping.new_tender_id)
        except Exception:
            self._delete_position(created.id)
            raise

        applied = mapping.model_copy(deep=True)
        applied.new_position = PositionSnapshot.of(created)
        applied.status = MappingStatus.APPLIED

        try:
            self._call("mark_applied", lambda: self.mappings.update(applied))
        except Exception:
            self._rollback(mapping, copied)
            self._delete_position(created.id)
            raise

        logger.debug(
            "additional_position_carried",
            mapping_id=mapping.id,
            position_id=created.id,
            items=len(copied.item_ids)
        )
        return copied

    def _copy_children(self, old_position_id: str, new_position_id: str, new_tender_id: str) -> ChildrenCopy:
        """
        Copy items, then links, of one position.

        On failure the rows written so far are removed before re-raising.
        """
        copied = ChildrenCopy(item_ids=[], link_ids=[])

        try:
            items = self._call("list_items", lambda: self.items.list(old_position_id))
            id_table: dict[str, str] = {}

            for item in items:
                new_item = self._call(
                    "copy_item",
                    lambda i=item: self.items.copy(i, new_position_id, new_tender_id)
                )
                id_table[item.id] = new_item.id
                copied.item_ids.append(new_item.id)

            links = self._call("list_links", lambda: self.links.list(old_position_id))

            for link in links:
                new_link = self._call(
                    "copy_link",
                    lambda l=link: self.links.copy(l, id_table, new_position_id)
                )
                if new_link is None:
                    copied.links_dropped += 1
                else:
                    copied.link_ids.append(new_link.id)

        except Exception:
            self._rollback_rows(copied)
            raise

        return copied

    # ===================
    # ROLLBACK
    # ===================

    def _rollback(self, mapping: Mapping, copied: ChildrenCopy) -> None:
        logger.warning(
            "rolling_back_mapping_transfer",
            mapping_id=mapping.id,
            items=len(copied.item_ids),
            links=len(copied.link_ids)
        )
        self._rollback_rows(copied)

    def _rollback_rows(self, copied: ChildrenCopy) -> None:
        """Best-effort removal of rows written by a failed attempt."""
        try:
            self._call("delete_links", lambda: self.links.delete(copied.link_ids))
            self._call("delete_items", lambda: self.items.delete(copied.item_ids))
        except Exception as e:
            logger.error(
                "transfer_rollback_failed",
                items=copied.item_ids,
                links=copied.link_ids,
                error=str(e)
            )

    def _delete_position(self, position_id: str) -> None:
        try:
            self._call("delete_position", lambda: self.positions.delete(position_id))
        except Exception as e:
            logger.error("transfer_rollback_failed", position_id=position_id, error=str(e))

    # ===================
    # HELPERS
    # ===================

    def _call(self, operation: str, func):
        return with_retry(
            operation,
            func,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            sleep=self._sleep,
        )

    def _error(self, mapping: Mapping, error: Exception) -> TransferError:
        message = error.message if isinstance(error, AppError) else str(error)
        return TransferError(
            mapping_id=mapping.id,
            old_position_number=mapping.old_position.number if mapping.old_position else None,
            message=message,
            error_type=type(error).__name__,
        )

    def _collect(self, outcome: MappingOutcome, result: TransferResult) -> None:
        """Fold one mapping's outcome into the result."""
        if outcome.skipped:
            result.skipped += 1
            return

        if outcome.error is not None:
            result.errors.append(outcome.error)
            return

        result.items_transferred += outcome.items
        result.links_transferred += outcome.links
        result.links_dropped += outcome.links_dropped

        if outcome.kind == JOB_COPY:
            result.positions_transferred += 1
        elif outcome.kind == JOB_CARRY:
            result.additional_positions_transferred += 1
        else:
            result.bookkeeping_applied += 1


# Singleton instance
_transfer_service: Optional[TransferService] = None


def get_transfer_service() -> TransferService:
    """Get or create TransferService instance."""
    global _transfer_service
    if _transfer_service is None:
        _transfer_service = TransferService()
    return _transfer_service
