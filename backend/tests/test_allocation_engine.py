"""
Test Suite for the Allocation & Deduplication Engine

Key tests:
1. Owner deduplication keeps the highest-point record
2. Capacity truncation and Queue accounting
3. Fresh / Repeat classification and cadence eligibility
4. Deterministic tie-breaking
5. Batch persistence, supersession and NoEligibleRecords
"""
import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

from app.models.db_models import (
    AccountStatus, TrackingDB, TrackingEventDB, WeeklyBatchDB, TrackingStatus, BatchStatus, SourceType, Lane,
)
from app.services.allocation import (
    AllocationEngine, NoEligibleRecords, SkipTraceLedgerService, ValidationError,
    resolve_account_config, select_records,
)


NOW = datetime(2026, 1, 5, 9, 0)


def make_tracking(points, owner_id=None, touches=0, status=TrackingStatus.ACTIVE,
                  next_eligible_at=None, created_at=NOW, property_id=None, lane=Lane.BLITZ):
    property_id = property_id or str(uuid4())
    return SimpleNamespace(
        id=str(uuid4()),
        property_id=property_id,
        property=SimpleNamespace(owner_id=owner_id),
        final_allocation_points=points,
        touch_count=touches,
        status=status,
        next_eligible_at=next_eligible_at,
        created_at=created_at,
        lane=lane,
    )


# =============================================================================
# PURE SELECTION
# =============================================================================

class TestSelectRecords:

    def test_owner_dedup_keeps_highest(self):
        high = make_tracking(80, owner_id="owner-1")
        low = make_tracking(60, owner_id="owner-1")
        selection = select_records([low, high], capacity=10, now=NOW)

        assert [r.tracking for r in selection.selected] == [high]
        assert selection.duplicates_avoided == 1
        assert low.status == TrackingStatus.ACTIVE

    def test_ownerless_properties_are_separate_groups(self):
        a = make_tracking(5)
        b = make_tracking(4)
        selection = select_records([a, b], capacity=10, now=NOW)
        assert selection.total == 2
        assert selection.duplicates_avoided == 0

    def test_capacity_and_queue(self):
        pool = [make_tracking(float(i)) for i in range(150)]
        selection = select_records(pool, capacity=100, now=NOW)

        assert selection.total == 100
        assert selection.queue_count == 50
        points = [r.tracking.final_allocation_points for r in selection.selected]
        assert points == sorted(points, reverse=True)
        assert points[-1] == 50.0

    def test_fewer_candidates_than_capacity(self):
        selection = select_records([make_tracking(1.0) for _ in range(3)], capacity=100, now=NOW)
        assert selection.total == 3
        assert selection.queue_count == 0

    def test_fresh_and_repeat_classification(self):
        fresh = make_tracking(2.0)
        repeat = make_tracking(1.0, touches=2, next_eligible_at=NOW - timedelta(days=1))
        selection = select_records([fresh, repeat], capacity=10, now=NOW)
        sources = {r.tracking.id: r.source_type for r in selection.selected}
        assert sources[fresh.id] == SourceType.FRESH
        assert sources[repeat.id] == SourceType.REPEAT

    def test_not_yet_due_is_not_a_candidate(self):
        waiting = make_tracking(9.0, touches=1, next_eligible_at=NOW + timedelta(days=1))
        selection = select_records([waiting], capacity=10, now=NOW)
        assert selection.total == 0
        assert selection.candidate_count == 0

    def test_only_active_records_are_candidates(self):
        pool = [
            make_tracking(9.0, status=TrackingStatus.COOLING_DOWN),
            make_tracking(8.0, status=TrackingStatus.SUPPRESSED),
            make_tracking(7.0, status=TrackingStatus.REMOVED_SOLD),
            make_tracking(1.0),
        ]
        selection = select_records(pool, capacity=10, now=NOW)
        assert selection.total == 1
        assert selection.selected[0].tracking.final_allocation_points == 1.0

    def test_ties_break_on_creation_then_property_id(self):
        later = make_tracking(1.0, created_at=NOW + timedelta(seconds=1), property_id="a")
        early_b = make_tracking(1.0, property_id="b")
        early_a = make_tracking(1.0, property_id="a2")
        selection = select_records([later, early_b, early_a], capacity=2, now=NOW)
        assert [r.tracking.property_id for r in selection.selected] == ["a2", "b"]

    def test_ranks_are_one_based(self):
        selection = select_records([make_tracking(2.0), make_tracking(1.0)], capacity=10, now=NOW)
        assert [r.rank for r in selection.selected] == [1, 2]


# =============================================================================
# ENGINE (DATABASE)
# =============================================================================

class TestGenerateBatch:

    def test_generates_and_persists_membership(self, db, clock, make_account, make_property, make_owner):
        account = make_account()
        owner = make_owner()
        best = make_property(signals=["foreclosure", "vacant"], owner=owner)
        make_property(signals=["absentee"], owner=owner)
        make_property(signals=["probate"])

        batch = AllocationEngine(db, clock=clock).generate_batch(account.id)

        assert batch.status == BatchStatus.GENERATED
        assert batch.total_records == 2
        assert batch.duplicate_contacts_avoided == 1
        assert batch.fresh_count == 2
        assert batch.blitz_count == 1
        assert batch.chase_count == 1
        assert batch.records[0].property_id == best.id
        assert batch.records[0].final_allocation_points == pytest.approx(1.84)
        assert batch.generated_at == clock.now
        db.refresh(account)
        assert account.first_batch_generated_at == clock.now

    def test_buy_box_limits_universe(self, db, clock, make_account, make_property):
        account = make_account(counties=["17031"], excluded_zips="60621")
        make_property(fips="17031")
        make_property(fips="17043")
        make_property(fips="17031", postal_code="60621")

        batch = AllocationEngine(db, clock=clock).generate_batch(account.id)
        assert batch.total_records == 1

    def test_no_eligible_records(self, db, clock, make_account, make_property):
        account = make_account(counties=["99999"])
        make_property()

        with pytest.raises(NoEligibleRecords):
            AllocationEngine(db, clock=clock).generate_batch(account.id)
        assert db.query(WeeklyBatchDB).count() == 0

    def test_regeneration_supersedes_undownloaded_batch(self, db, clock, make_account, make_property):
        account = make_account()
        make_property()
        engine = AllocationEngine(db, clock=clock)

        first = engine.generate_batch(account.id)
        clock.advance(hours=1)
        second = engine.generate_batch(account.id)

        db.refresh(first)
        assert first.status == BatchStatus.ARCHIVED
        assert second.status == BatchStatus.GENERATED
        assert engine.latest_generated_batch(account.id).id == second.id

    def test_generation_does_not_touch(self, db, clock, make_account, make_property):
        account = make_account()
        make_property()
        AllocationEngine(db, clock=clock).generate_batch(account.id)

        tracking = db.query(TrackingDB).one()
        assert tracking.touch_count == 0
        assert tracking.last_touch_at is None

    def test_refresh_is_idempotent(self, db, clock, make_account, make_property):
        account = make_account()
        make_property()
        engine = AllocationEngine(db, clock=clock)

        first = engine.refresh_scores(account.id)
        second = engine.refresh_scores(account.id)

        assert first.trackings_created == 1
        assert second.trackings_created == 0
        assert second.trackings_rescored == 0
        assert db.query(TrackingDB).count() == 1

    def test_signal_change_rescores_next_cycle(self, db, clock, make_account, make_property):
        account = make_account()
        prop = make_property(signals=["absentee"])
        engine = AllocationEngine(db, clock=clock)
        engine.refresh_scores(account.id)

        prop.signal_keys = ["absentee", "foreclosure"]
        db.commit()
        report = engine.refresh_scores(account.id)

        tracking = db.query(TrackingDB).one()
        assert report.trackings_rescored == 1
        assert tracking.lane == Lane.BLITZ

    def test_paused_account_rejected(self, db, clock, make_account, make_property):
        account = make_account(status=AccountStatus.PAUSED)
        make_property()
        with pytest.raises(ValidationError):
            AllocationEngine(db, clock=clock).generate_batch(account.id)

    def test_preview_is_read_only(self, db, clock, make_account, make_property):
        account = make_account()
        make_property()
        engine = AllocationEngine(db, clock=clock)
        engine.refresh_scores(account.id)

        selection = engine.preview_selection(account, resolve_account_config(db, account))
        assert selection.total == 1
        assert not db.new
        assert not db.dirty
        assert db.query(WeeklyBatchDB).count() == 0

    def test_no_eligible_records_leaves_state_untouched(self, db, clock, make_account, make_property):
        account = make_account()
        make_property(signals=[])
        make_property(signals=[])

        with pytest.raises(NoEligibleRecords):
            AllocationEngine(db, clock=clock).generate_batch(account.id)

        assert db.query(TrackingDB).count() == 0
        assert db.query(TrackingEventDB).count() == 0

    def test_preview_matches_generation_on_fresh_account(self, db, clock, make_account, make_property):
        account = make_account(capacity=2)
        for _ in range(3):
            make_property()
        engine = AllocationEngine(db, clock=clock)

        selection = engine.preview_selection(account, resolve_account_config(db, account))
        assert selection.total == 2
        assert selection.queue_count == 1
        assert db.query(TrackingDB).count() == 0

        assert engine.generate_batch(account.id).total_records == 2


class TestCooldownRoundTrip:
    """Touch ceiling -> CoolingDown -> expiry -> Active again as a Fresh record."""

    def test_record_returns_fresh_after_cooldown(self, db, clock, make_account, make_property):
        account = make_account(blitz_max_touches=2)
        prop = make_property(signals=["foreclosure"])
        engine = AllocationEngine(db, clock=clock)
        ledger = SkipTraceLedgerService(db, clock=clock)

        ledger.execute(account.id)
        clock.advance(days=14)
        ledger.execute(account.id)

        tracking = db.query(TrackingDB).filter(TrackingDB.property_id == prop.id).one()
        assert tracking.touch_count == 2

        clock.advance(days=14)
        report = engine.refresh_scores(account.id)
        db.refresh(tracking)
        assert report.cooldowns_entered == 1
        assert tracking.status == TrackingStatus.COOLING_DOWN
        assert tracking.cooldown_end_at > clock.now

        with pytest.raises(NoEligibleRecords):
            engine.generate_batch(account.id)

        clock.now = tracking.cooldown_end_at
        batch = engine.generate_batch(account.id)

        db.refresh(tracking)
        assert tracking.status == TrackingStatus.ACTIVE
        assert tracking.touch_count == 0
        assert tracking.cooldown_end_at is None
        assert batch.total_records == 1
        assert batch.records[0].source_type == SourceType.FRESH
        assert batch.fresh_count == 1

        triggers = [
            e.trigger for e in db.query(TrackingEventDB).filter(
                TrackingEventDB.tracking_id == tracking.id
            ).order_by(TrackingEventDB.created_at).all()
        ]
        assert "max_touches_reached" in triggers
        assert "cooldown_expired" in triggers
