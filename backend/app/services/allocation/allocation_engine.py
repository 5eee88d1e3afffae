"""
Allocation & Deduplication Engine

Selects, per weekly cycle, the capacity-bounded, owner-deduplicated set of
tracking entities that make up a batch.

Pipeline:
1. Refresh: buy-box filter -> lazy tracking creation -> rescoring -> cadence
2. Candidates: Active and (never touched or due per lane cadence)
3. Deduplicate by owning contact, keeping the highest-point record
4. Sort by points (ties: tracking creation order, then property id), truncate
5. Classify Fresh / Repeat; residual candidates are counted as Queue
6. Persist batch + explicit membership rows

Membership is persisted at generation time so estimation and execution
read a stable snapshot even if scores move in between.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    AccountDB, PropertyDB, TrackingDB, WeeklyBatchDB, BatchRecordDB,
    TrackingStatus, BatchStatus, SourceType, Lane, ActorType, utcnow,
)
from ...models.allocation_models import (
    AccountConfig, CycleReport, Selection, SelectedRecord,
)
from .account_config import get_account, resolve_account_config
from .buy_box import BuyBoxFilter
from .cadence import CadenceStateMachine
from .errors import NoEligibleRecords
from .scoring import apply_score, score_signals
from .signal_catalog import SignalCatalog

logger = logging.getLogger(__name__)

WEEK_LENGTH_DAYS = 7


# =============================================================================
# PURE SELECTION HELPERS
# =============================================================================

def is_candidate(tracking: TrackingDB, now: datetime) -> bool:
    """Active and either never touched or due per its lane cadence."""
    if not tracking.status.is_selectable:
        return False
    if (tracking.touch_count or 0) == 0:
        return True
    return tracking.next_eligible_at is not None and tracking.next_eligible_at <= now


def owner_key(tracking: TrackingDB) -> str:
    """Deduplication key. Ownerless properties are their own group."""
    owner_id = tracking.property.owner_id if tracking.property is not None else None
    if owner_id:
        return f"owner:{owner_id}"
    return f"property:{tracking.property_id}"


def priority_key(tracking: TrackingDB) -> Tuple[float, datetime, str]:
    """Descending points; ties broken by creation order, then property id."""
    return (
        -(tracking.final_allocation_points or 0.0),
        tracking.created_at or datetime.min,
        tracking.property_id,
    )


def select_records(pool: List[TrackingDB], capacity: int, now: datetime) -> Selection:
    """
    Candidate filter, owner deduplication, capacity truncation and
    source classification over an already-refreshed pool.
    """
    candidates = [t for t in pool if is_candidate(t, now)]

    best_by_owner: Dict[str, TrackingDB] = {}
    for tracking in candidates:
        key = owner_key(tracking)
        current = best_by_owner.get(key)
        if current is None or priority_key(tracking) < priority_key(current):
            best_by_owner[key] = tracking

    deduplicated = sorted(best_by_owner.values(), key=priority_key)
    chosen = deduplicated[:capacity]

    selection = Selection(
        candidate_count=len(candidates),
        deduplicated_count=len(deduplicated),
    )
    for rank, tracking in enumerate(chosen, start=1):
        source = SourceType.FRESH if (tracking.touch_count or 0) == 0 else SourceType.REPEAT
        selection.selected.append(SelectedRecord(tracking=tracking, source_type=source, rank=rank))
    return selection


def make_batch_code(account_id: str, now: datetime) -> str:
    iso_year, iso_week, _ = now.isocalendar()
    return f"{account_id[:8]}-{iso_year}-W{iso_week:02d}-{uuid4().hex[:6]}"


# =============================================================================
# ENGINE
# =============================================================================

class AllocationEngine:
    """
    Runs the weekly cycle for one account at a time.

    Callers are responsible for per-account serialization (LeadEngine
    wraps every mutating call in the account lock).
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock if clock is not None else utcnow
        self.state_machine = CadenceStateMachine(db)

    # =========================================================================
    # REFRESH
    # =========================================================================

    def _candidate_properties(self, config: AccountConfig) -> List[PropertyDB]:
        query = self.db.query(PropertyDB)
        if config.buy_box.counties:
            query = query.filter(PropertyDB.fips.in_(list(config.buy_box.counties)))
        return query.order_by(PropertyDB.id).all()

    def refresh(
        self,
        account: AccountDB,
        config: AccountConfig,
        now: datetime,
    ) -> Tuple[CycleReport, List[TrackingDB]]:
        """
        Buy-box filter, lazy tracking creation, rescoring and cadence
        transitions. Does not commit.

        Returns the cycle report and the pool of tracking entities whose
        property passed the buy-box this cycle.
        """
        report = CycleReport(account_id=account.id, run_at=now)
        catalog = SignalCatalog.load(self.db)
        buy_box_filter = BuyBoxFilter(config.buy_box)

        properties = self._candidate_properties(config)
        report.properties_considered = len(properties)
        eligible = buy_box_filter.filter(properties)
        report.properties_eligible = len(eligible)

        existing = {
            t.property_id: t
            for t in self.db.query(TrackingDB).filter(TrackingDB.account_id == account.id).all()
        }

        pool = []
        for prop in eligible:
            tracking = existing.get(prop.id)
            if tracking is None:
                tracking = self._create_tracking(account.id, prop, now)
                report.trackings_created += 1

            if not tracking.status.is_cycle_managed:
                # Administrative states are hard exclusions; leave them untouched
                continue

            signal_score = score_signals(prop.signal_keys or [], catalog)
            if apply_score(tracking, signal_score):
                report.trackings_rescored += 1

            applied = self.state_machine.evaluate_cycle(tracking, config.cadence, now)
            if "cooldown_exit" in applied:
                report.cooldowns_exited += 1
            if "cooldown_entry" in applied:
                report.cooldowns_entered += 1

            pool.append(tracking)

        self.db.flush()
        logger.info(
            f"Cycle refresh for account {account.id}: {report.properties_eligible}/"
            f"{report.properties_considered} eligible, {report.trackings_created} created, "
            f"{report.cooldowns_entered} entered cooldown, {report.cooldowns_exited} exited cooldown"
        )
        return report, pool

    def _create_tracking(self, account_id: str, prop: PropertyDB, now: datetime) -> TrackingDB:
        tracking = TrackingDB(
            id=str(uuid4()),
            account_id=account_id,
            property_id=prop.id,
            lane=Lane.NURTURE,
            status=TrackingStatus.ACTIVE,
            base_score=0.0,
            effective_score=0.0,
            final_allocation_points=0.0,
            matched_signals=[],
            touch_count=0,
            created_at=now,
        )
        tracking.property = prop
        self.db.add(tracking)
        self.state_machine.record_event(
            tracking, None, TrackingStatus.ACTIVE,
            trigger="tracking_created", actor=ActorType.SYSTEM,
        )
        return tracking

    def refresh_scores(self, account_id: str) -> CycleReport:
        """Validated refresh of one account, committed."""
        account = get_account(self.db, account_id)
        config = resolve_account_config(self.db, account)
        now = self.clock()
        try:
            report, _ = self.refresh(account, config, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return report

    # =========================================================================
    # PREVIEW
    # =========================================================================

    @contextmanager
    def simulated_cycle(self, account: AccountDB, config: AccountConfig) -> Iterator[Selection]:
        """
        Run the refresh and selection exactly as generation would, then
        roll the session back on exit. Read the selection inside the block:
        afterwards persistent records are expired and new ones are gone.
        Any other pending changes in the session are discarded as well.
        """
        now = self.clock()
        try:
            _, pool = self.refresh(account, config, now)
            yield select_records(pool, config.weekly_capacity, now)
        finally:
            self.db.rollback()

    def preview_selection(self, account: AccountDB, config: AccountConfig) -> Selection:
        """Selection counts a batch would have right now. Persists nothing."""
        with self.simulated_cycle(account, config) as selection:
            return selection

    # =========================================================================
    # GENERATION
    # =========================================================================

    def latest_generated_batch(self, account_id: str) -> Optional[WeeklyBatchDB]:
        return self.db.query(WeeklyBatchDB).filter(
            WeeklyBatchDB.account_id == account_id,
            WeeklyBatchDB.status == BatchStatus.GENERATED,
        ).order_by(WeeklyBatchDB.generated_at.desc()).first()

    def generate_batch(self, account_id: str) -> WeeklyBatchDB:
        """
        Run a full cycle and persist a Generated batch.

        A re-generation before download supersedes: earlier Generated
        batches are archived in the same commit as the new batch.

        Raises NoEligibleRecords when nothing is selected. Nothing is
        committed in that case, the refresh included; use refresh_scores
        to persist a refresh on its own.
        """
        account = get_account(self.db, account_id)
        config = resolve_account_config(self.db, account)
        now = self.clock()
        logger.info(f"[GenerateBatch] Starting for account {account_id}")

        try:
            _, pool = self.refresh(account, config, now)
            selection = select_records(pool, config.weekly_capacity, now)

            if selection.total == 0:
                logger.warning(f"[GenerateBatch] No eligible records for account {account_id}")
                raise NoEligibleRecords(account_id, selection.candidate_count)

            superseded = self._archive_generated(account_id)
            batch = self._persist_batch(account, selection, now)
            if account.first_batch_generated_at is None:
                account.first_batch_generated_at = now

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if superseded:
            logger.info(f"[GenerateBatch] Superseded {superseded} undownloaded batch(es) for account {account_id}")
        logger.info(f"[GenerateBatch] Batch {batch.batch_code} created with {batch.total_records} records")
        return batch

    def _archive_generated(self, account_id: str) -> int:
        stale = self.db.query(WeeklyBatchDB).filter(
            WeeklyBatchDB.account_id == account_id,
            WeeklyBatchDB.status == BatchStatus.GENERATED,
        ).all()
        for batch in stale:
            batch.status = BatchStatus.ARCHIVED
        return len(stale)

    def _persist_batch(self, account: AccountDB, selection: Selection, now: datetime) -> WeeklyBatchDB:
        week_start = now.date()
        batch = WeeklyBatchDB(
            id=str(uuid4()),
            account_id=account.id,
            batch_code=make_batch_code(account.id, now),
            week_start=week_start,
            week_end=week_start + timedelta(days=WEEK_LENGTH_DAYS - 1),
            total_records=selection.total,
            fresh_count=selection.count_source(SourceType.FRESH),
            repeat_count=selection.count_source(SourceType.REPEAT),
            queue_count=selection.queue_count,
            blitz_count=selection.count_lane(Lane.BLITZ),
            chase_count=selection.count_lane(Lane.CHASE),
            nurture_count=selection.count_lane(Lane.NURTURE),
            duplicate_contacts_avoided=selection.duplicates_avoided,
            skip_trace_count=0,
            status=BatchStatus.GENERATED,
            generated_at=now,
            download_count=0,
        )
        self.db.add(batch)

        for record in selection.selected:
            tracking = record.tracking
            batch.records.append(BatchRecordDB(
                id=str(uuid4()),
                tracking_id=tracking.id,
                property_id=tracking.property_id,
                rank=record.rank,
                source_type=record.source_type,
                lane=tracking.lane,
                final_allocation_points=tracking.final_allocation_points,
                touch_count_at_allocation=tracking.touch_count or 0,
            ))
        return batch
