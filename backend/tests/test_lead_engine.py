"""
Test Suite for the LeadEngine facade, per-account locking and the
weekly cycle scheduler.
"""
import threading
import pytest
from datetime import datetime
from decimal import Decimal

from app.models.db_models import AccountStatus, SuppressionType, TrackingStatus, WeeklyBatchDB
from app.services.allocation import (
    AccountLockRegistry, LeadEngine, StatusSignalService, WeeklyCycleScheduler, NotFound,
)
from app.services.allocation.cycle_scheduler import parse_cycle_time


class TestLeadEngine:

    def test_filter_eligible(self, db, make_account, make_property):
        account = make_account(max_price=100000)
        cheap = make_property(value=90000)
        pricey = make_property(value=250000)

        engine = LeadEngine(db)
        assert engine.filter_eligible(account.id, [cheap, pricey]) == [cheap]

    def test_full_weekly_flow(self, db, clock, make_account, make_property):
        account = make_account(balance="1.00")
        for _ in range(3):
            make_property()
        engine = LeadEngine(db, clock=clock)

        batch = engine.generate_batch(account.id)
        estimate = engine.estimate_skip_trace(account.id)
        result = engine.execute_batch(account.id, include_skip_trace=True)

        assert estimate.batch_id == batch.id
        assert result.batch.id == batch.id
        assert engine.get_wallet(account.id).balance == Decimal("0.82")
        assert [b.id for b in engine.get_batches(account.id)] == [batch.id]

    def test_tracking_summary(self, db, clock, make_account, make_property):
        account = make_account()
        props = [make_property() for _ in range(4)]
        make_property(signals=[])  # scores zero, cools down immediately
        engine = LeadEngine(db, clock=clock)
        engine.refresh_scores(account.id)

        feeds = StatusSignalService(db)
        feeds.apply_status_signal(account.id, props[0].id, TrackingStatus.SUPPRESSED)
        feeds.apply_status_signal(account.id, props[1].id, TrackingStatus.REMOVED_SOLD)

        assert engine.get_tracking_summary(account.id) == {
            "active": 2,
            "cooling_down": 1,
            "removed": 1,
            "suppressed": 1,
            "contact_constrained": 0,
        }
        assert len(engine.get_tracking(account.id, status=TrackingStatus.ACTIVE)) == 2

    def test_views_require_known_account(self, db):
        with pytest.raises(NotFound):
            LeadEngine(db).get_tracking_summary("missing")

    def test_locks_are_shared_per_account(self, db, clock, make_account, make_property):
        account = make_account()
        make_property()
        locks = AccountLockRegistry()
        engine = LeadEngine(db, locks=locks, clock=clock)
        assert engine.locks is locks

        engine.refresh_scores(account.id)
        engine.generate_batch(account.id)
        assert len(locks) == 1


    def test_status_feed_waits_for_account_lock(self, db, clock, make_account, make_property):
        account = make_account()
        prop = make_property()
        locks = AccountLockRegistry()
        engine = LeadEngine(db, locks=locks, clock=clock)
        done = threading.Event()

        def suppress():
            engine.apply_status_signal(account.id, prop.id, TrackingStatus.SUPPRESSED, "owner request")
            done.set()

        with locks.hold(account.id):
            worker = threading.Thread(target=suppress)
            worker.start()
            assert not done.wait(timeout=0.2)

        worker.join(timeout=5)
        assert done.is_set()
        assert engine.get_tracking(account.id)[0].status == TrackingStatus.SUPPRESSED

    def test_suppression_import_and_lift(self, db, clock, make_account, make_property):
        account = make_account()
        prop = make_property(address="12 Elm St")
        engine = LeadEngine(db, clock=clock)
        engine.refresh_scores(account.id)

        assert engine.apply_suppression_entries(account.id, SuppressionType.ADDRESS, ["12 ELM ST"]) == 1
        assert engine.lift_suppression(account.id, prop.id).status == TrackingStatus.ACTIVE

    def test_removal_locks_every_tracking_account(self, db, clock, make_account, make_property):
        first, second = make_account(), make_account()
        prop = make_property()
        locks = AccountLockRegistry()
        engine = LeadEngine(db, locks=locks, clock=clock)
        engine.refresh_scores(first.id)
        engine.refresh_scores(second.id)

        assert engine.mark_property_removed(prop.id, TrackingStatus.REMOVED_SOLD) == 2
        assert len(locks) == 2


class TestAccountLockRegistry:

    def test_same_account_serialized(self):
        locks = AccountLockRegistry()
        entered = threading.Event()

        def contender():
            with locks.hold("acct-1"):
                entered.set()

        with locks.hold("acct-1"):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(timeout=0.2)

        worker.join(timeout=2)
        assert entered.is_set()

    def test_different_accounts_independent(self):
        locks = AccountLockRegistry()
        entered = threading.Event()

        def other():
            with locks.hold("acct-2"):
                entered.set()

        with locks.hold("acct-1"):
            worker = threading.Thread(target=other)
            worker.start()
            assert entered.wait(timeout=2)
        worker.join(timeout=2)


    def test_hold_many_blocks_each_account(self):
        locks = AccountLockRegistry()
        entered = threading.Event()

        def contender():
            with locks.hold("acct-2"):
                entered.set()

        with locks.hold_many(["acct-2", "acct-1", "acct-2"]):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(timeout=0.2)

        worker.join(timeout=2)
        assert entered.is_set()
        assert len(locks) == 2


class TestWeeklyCycleScheduler:

    def test_parse_cycle_time(self):
        assert parse_cycle_time("08:30").hour == 8
        assert parse_cycle_time(None).hour == 0

    def test_due_account_generates_once(self, db, clock, make_account, make_property):
        account = make_account(cycle_day="Monday", cycle_time="08:00")
        make_property()
        engine = LeadEngine(db, clock=clock)
        scheduler = WeeklyCycleScheduler(db, engine)

        first = scheduler.run_due_cycles(clock.now)
        second = scheduler.run_due_cycles(clock.now)

        assert first["batches_generated"] == 1
        assert first["details"]["generated"][0]["account_id"] == account.id
        assert second["batches_generated"] == 0
        assert db.query(WeeklyBatchDB).count() == 1

    def test_not_due_before_cycle_time_or_other_day(self, db, clock, make_account, make_property):
        make_account(cycle_day="Monday", cycle_time="10:00")
        make_account(cycle_day="Tuesday", cycle_time="08:00")
        make_account()  # no schedule
        make_property()
        scheduler = WeeklyCycleScheduler(db, LeadEngine(db, clock=clock))

        assert scheduler.run_due_cycles(clock.now)["batches_generated"] == 0

    def test_paused_accounts_skipped(self, db, clock, make_account, make_property):
        make_account(cycle_day="Monday", status=AccountStatus.PAUSED)
        make_property()
        scheduler = WeeklyCycleScheduler(db, LeadEngine(db, clock=clock))

        assert scheduler.run_due_cycles(clock.now)["batches_generated"] == 0

    def test_failures_are_collected(self, db, clock, make_account, make_property):
        empty = make_account(cycle_day="monday", counties=["99999"])
        ok = make_account(cycle_day="Monday")
        make_property()
        scheduler = WeeklyCycleScheduler(db, LeadEngine(db, clock=clock))

        summary = scheduler.run_due_cycles(clock.now)

        assert summary["batches_generated"] == 1
        assert summary["errors"] == 1
        assert summary["details"]["errors"][0]["account_id"] == empty.id
        assert summary["details"]["errors"][0]["error"] == "NoEligibleRecords"
        assert summary["details"]["generated"][0]["account_id"] == ok.id

    def test_invalid_cycle_time_skipped(self, db, clock, make_account):
        make_account(cycle_day="Monday", cycle_time="late")
        scheduler = WeeklyCycleScheduler(db, LeadEngine(db, clock=clock))
        assert scheduler.due_accounts(clock.now) == []

    def test_run_date_reported(self, db, clock):
        summary = WeeklyCycleScheduler(db, LeadEngine(db, clock=clock)).run_due_cycles(datetime(2026, 1, 5, 9))
        assert summary["run_date"] == "2026-01-05T09:00:00"
