"""
Lead Engine facade

The interface the surrounding application calls: filtering, cycle
refresh, batch generation, skip-trace estimation, execution, status
feeds and the read-only dashboard views. Mutating calls are serialized
per account.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import (
    PropertyDB, TrackingDB, WeeklyBatchDB, WalletTransactionDB, SuppressionType, TrackingStatus, utcnow,
)
from ...models.allocation_models import (
    CycleReport, ExecutionResult, SkipTraceEstimate, WalletView,
)
from .account_config import get_account, resolve_account_config
from .account_locks import AccountLockRegistry
from .allocation_engine import AllocationEngine
from .buy_box import BuyBoxFilter
from .settlement_ledger import SkipTraceLedgerService, WALLET_LOAD_EVENT
from .skip_trace import SkipTraceProvider
from .status_sync import StatusSignalService

logger = logging.getLogger(__name__)


class LeadEngine:
    """
    Entry point for one database session.

    Args:
        db: SQLAlchemy session holding the account's repositories
        provider: skip-trace vendor client (optional)
        locks: shared per-account lock registry; a private one is used if omitted
        clock: returns naive UTC "now"; injectable for tests and replays
    """

    def __init__(
        self,
        db: Session,
        provider: Optional[SkipTraceProvider] = None,
        locks: Optional[AccountLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.clock = clock if clock is not None else utcnow
        self.locks = locks if locks is not None else AccountLockRegistry()
        self.allocation = AllocationEngine(db, clock=self.clock)
        self.ledger = SkipTraceLedgerService(db, provider=provider, clock=self.clock)
        self.status_feeds = StatusSignalService(db)

    # =========================================================================
    # CYCLE OPERATIONS
    # =========================================================================

    def filter_eligible(self, account_id: str, properties: List[PropertyDB]) -> List[PropertyDB]:
        """Properties that pass the account's buy-box. No side effects."""
        account = get_account(self.db, account_id)
        config = resolve_account_config(self.db, account)
        return BuyBoxFilter(config.buy_box).filter(properties)

    def refresh_scores(self, account_id: str) -> CycleReport:
        with self.locks.hold(account_id):
            return self.allocation.refresh_scores(account_id)

    def generate_batch(self, account_id: str) -> WeeklyBatchDB:
        with self.locks.hold(account_id):
            return self.allocation.generate_batch(account_id)

    def estimate_skip_trace(self, account_id: str) -> SkipTraceEstimate:
        return self.ledger.estimate(account_id)

    def execute_batch(self, account_id: str, include_skip_trace: bool = False) -> ExecutionResult:
        with self.locks.hold(account_id):
            return self.ledger.execute(account_id, include_skip_trace=include_skip_trace)

    def redownload_batch(self, account_id: str, batch_id: str) -> ExecutionResult:
        with self.locks.hold(account_id):
            return self.ledger.redownload(account_id, batch_id)

    def credit_wallet(self, account_id: str, amount, protocol_event: str = WALLET_LOAD_EVENT) -> WalletTransactionDB:
        with self.locks.hold(account_id):
            return self.ledger.credit_wallet(account_id, amount, protocol_event)

    # =========================================================================
    # STATUS FEEDS
    # =========================================================================

    def apply_status_signal(
        self,
        account_id: str,
        property_id: str,
        status: TrackingStatus,
        reason: Optional[str] = None,
    ) -> TrackingDB:
        with self.locks.hold(account_id):
            return self.status_feeds.apply_status_signal(account_id, property_id, status, reason)

    def lift_suppression(self, account_id: str, property_id: str) -> TrackingDB:
        with self.locks.hold(account_id):
            return self.status_feeds.lift_suppression(account_id, property_id)

    def apply_suppression_entries(
        self,
        account_id: str,
        suppression_type: SuppressionType,
        values: Iterable[str],
        list_name: Optional[str] = None,
    ) -> int:
        with self.locks.hold(account_id):
            return self.status_feeds.apply_suppression_entries(account_id, suppression_type, values, list_name)

    def mark_property_removed(self, property_id: str, status: TrackingStatus, reason: Optional[str] = None) -> int:
        """Removal spans accounts; every account tracking the property is locked."""
        account_ids = [
            row.account_id for row in self.db.query(TrackingDB.account_id).filter(
                TrackingDB.property_id == property_id
            ).distinct()
        ]
        with self.locks.hold_many(account_ids):
            return self.status_feeds.mark_property_removed(property_id, status, reason)

    # =========================================================================
    # READ-ONLY VIEWS
    # =========================================================================

    def get_tracking(self, account_id: str, status: Optional[TrackingStatus] = None) -> List[TrackingDB]:
        get_account(self.db, account_id)
        query = self.db.query(TrackingDB).filter(TrackingDB.account_id == account_id)
        if status is not None:
            query = query.filter(TrackingDB.status == status)
        return query.order_by(TrackingDB.final_allocation_points.desc(), TrackingDB.created_at).all()

    def get_tracking_summary(self, account_id: str) -> Dict[str, int]:
        summary = {
            "active": 0,
            "cooling_down": 0,
            "removed": 0,
            "suppressed": 0,
            "contact_constrained": 0,
        }
        for tracking in self.get_tracking(account_id):
            status = tracking.status
            if status.is_removed:
                summary["removed"] += 1
            elif status == TrackingStatus.ACTIVE:
                summary["active"] += 1
            elif status == TrackingStatus.COOLING_DOWN:
                summary["cooling_down"] += 1
            elif status == TrackingStatus.SUPPRESSED:
                summary["suppressed"] += 1
            else:
                summary["contact_constrained"] += 1
        return summary

    def get_wallet(self, account_id: str) -> WalletView:
        return self.ledger.get_wallet(account_id)

    def get_batches(self, account_id: str) -> List[WeeklyBatchDB]:
        get_account(self.db, account_id)
        return self.db.query(WeeklyBatchDB).filter(
            WeeklyBatchDB.account_id == account_id
        ).order_by(WeeklyBatchDB.generated_at.desc()).all()
