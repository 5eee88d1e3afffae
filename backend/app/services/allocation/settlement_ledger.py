"""
Skip-Trace Settlement Ledger

The only place money changes hands. Estimates enrichment cost for the
current batch, enforces the wallet balance, records signed transactions
and executes the batch (touch increments, Downloaded transition).

Core Principles:
1. The wallet ledger is append-only - balances move only with a transaction row.
2. Wallet debit, ledger append, trace stamps and touch increments commit
   together or not at all.
3. Touches increment on the transition into Downloaded only. Re-downloads
   re-export without touching.
4. Every precondition (balance, provider lookups) is checked before the
   first mutation.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    AccountDB, TrackingDB, WeeklyBatchDB, WalletTransactionDB, SkipTraceDB,
    BatchStatus, utcnow,
)
from ...models.allocation_models import (
    AccountConfig, ExecutionResult, ExportRecord, SkipTraceEstimate,
    TraceResult, WalletView,
)
from .account_config import get_account, resolve_account_config
from .allocation_engine import AllocationEngine
from .errors import InsufficientFunds, InvalidTransition, NotFound, ValidationError
from .scoring import redecay
from .skip_trace import SkipTraceProvider, UnconfiguredSkipTraceProvider

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TRACE_FRESHNESS_WINDOW = timedelta(days=180)  # 6 months
ENRICHMENT_EVENT = "SKIP TRACE BATCH ENRICHMENT"
WALLET_LOAD_EVENT = "WALLET LOAD"


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def is_trace_eligible(tracking: TrackingDB, now: datetime) -> bool:
    """Never traced, or the last trace is older than the freshness window."""
    if tracking.skip_traced_at is None:
        return True
    return tracking.skip_traced_at < now - TRACE_FRESHNESS_WINDOW


class SkipTraceLedgerService:
    """
    Settlement service for batch execution and the account wallet.

    Provides:
    - estimate: cost preview over the current batch
    - execute: optional enrichment + touch increments + Downloaded transition
    - redownload: re-export of an executed batch (no touches, no charges)
    - credit_wallet / get_wallet: ledger loads and read-only view
    """

    def __init__(
        self,
        db: Session,
        provider: Optional[SkipTraceProvider] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.provider = provider if provider is not None else UnconfiguredSkipTraceProvider()
        self.clock = clock if clock is not None else utcnow
        self.allocation = AllocationEngine(db, clock=self.clock)

    # =========================================================================
    # ESTIMATION
    # =========================================================================

    @staticmethod
    def _members(batch: WeeklyBatchDB) -> List[TrackingDB]:
        """Batch members still under cadence control, in export order."""
        members = []
        for record in batch.records:
            tracking = record.tracking
            if tracking is None or not tracking.status.is_cycle_managed:
                logger.warning(
                    f"Batch {batch.batch_code}: record {record.tracking_id} is held "
                    f"({tracking.status.value if tracking else 'missing'}), excluded from execution"
                )
                continue
            members.append(tracking)
        return members

    def _estimate_over(
        self,
        trackings: List[TrackingDB],
        rate: Decimal,
        now: datetime,
        batch_id: Optional[str],
    ) -> Tuple[SkipTraceEstimate, List[TrackingDB]]:
        eligible = [t for t in trackings if is_trace_eligible(t, now)]
        estimate = SkipTraceEstimate(
            eligible_count=len(eligible),
            already_traced_count=len(trackings) - len(eligible),
            rate_per_record=rate,
            total_cost=to_money(rate * len(eligible)),
            batch_id=batch_id,
        )
        return estimate, eligible

    def estimate(self, account_id: str) -> SkipTraceEstimate:
        """
        Enrichment cost for the latest Generated batch, or, when no batch
        is waiting, for the records a generation would select right now.
        The latter runs the cycle in a rolled-back transaction.
        """
        account = get_account(self.db, account_id)
        config = resolve_account_config(self.db, account)
        now = self.clock()

        batch = self.allocation.latest_generated_batch(account_id)
        if batch is not None:
            estimate, _ = self._estimate_over(self._members(batch), config.skip_trace_rate, now, batch.id)
            source = f"batch {batch.batch_code}"
        else:
            with self.allocation.simulated_cycle(account, config) as selection:
                trackings = [r.tracking for r in selection.selected]
                estimate, _ = self._estimate_over(trackings, config.skip_trace_rate, now, None)
            source = "preview selection"

        logger.info(
            f"[Estimates] Account {account_id} ({source}): {estimate.eligible_count} eligible, "
            f"{estimate.already_traced_count} already traced, total {estimate.total_cost}"
        )
        return estimate

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def execute(self, account_id: str, include_skip_trace: bool = False) -> ExecutionResult:
        """
        Execute the account's Generated batch, generating one first if needed.

        Raises InsufficientFunds (batch stays Generated, nothing debited)
        when enrichment is requested and the wallet cannot cover it, and
        InvalidTransition when the batch stopped being Generated while
        waiting for the account row lock.
        """
        logger.info(f"[ExecuteBatch] Executing for account {account_id}, skip_trace={include_skip_trace}")

        batch = self.allocation.latest_generated_batch(account_id)
        if batch is None:
            logger.info("[ExecuteBatch] No Generated batch found. Triggering generation.")
            batch = self.allocation.generate_batch(account_id)
        batch_id = batch.id

        # Row lock on the account serializes wallet checks across workers
        account = get_account(self.db, account_id, for_update=True)
        try:
            # Anything read before the lock may predate another worker's commit
            self.db.expire_all()
            batch = self.db.query(WeeklyBatchDB).filter(WeeklyBatchDB.id == batch_id).first()
            if batch is None or batch.status != BatchStatus.GENERATED:
                state = batch.status.value if batch is not None else "gone"
                raise InvalidTransition(f"Batch {batch_id} is {state}; it was executed or superseded concurrently")

            config = resolve_account_config(self.db, account)
            now = self.clock()
            members = self._members(batch)

            # ---- preconditions -------------------------------------------------
            estimate = None
            to_trace: List[TrackingDB] = []
            traces: Dict[str, Optional[TraceResult]] = {}
            if include_skip_trace:
                estimate, to_trace = self._estimate_over(members, config.skip_trace_rate, now, batch.id)
                if estimate.eligible_count > 0:
                    balance = to_money(account.skip_trace_wallet_balance or 0)
                    if balance < estimate.total_cost:
                        logger.error(f"[ExecuteBatch] Insufficient funds: {balance} < {estimate.total_cost}")
                        raise InsufficientFunds(account_id, balance, estimate.total_cost)
                    for tracking in to_trace:
                        prop = tracking.property
                        traces[tracking.id] = self.provider.trace(prop, prop.owner if prop else None)

            # ---- mutations -----------------------------------------------------
            if estimate is not None and estimate.eligible_count > 0:
                self._settle_enrichment(account, batch, estimate, to_trace, traces, now)

            self._apply_touches(members, config, now)

            batch.status = BatchStatus.DOWNLOADED
            if batch.first_download_at is None:
                batch.first_download_at = now
            batch.download_count = (batch.download_count or 0) + 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[ExecuteBatch] Batch {batch.batch_code} execution complete ({len(members)} touched)")
        return ExecutionResult(batch=batch, records=self.build_export(batch))

    def _settle_enrichment(
        self,
        account: AccountDB,
        batch: WeeklyBatchDB,
        estimate: SkipTraceEstimate,
        to_trace: List[TrackingDB],
        traces: Dict[str, Optional[TraceResult]],
        now: datetime,
    ) -> None:
        previous = to_money(account.skip_trace_wallet_balance or 0)
        account.skip_trace_wallet_balance = previous - estimate.total_cost
        self.db.add(WalletTransactionDB(
            id=str(uuid4()),
            account_id=account.id,
            batch_id=batch.id,
            protocol_event=ENRICHMENT_EVENT,
            settlement_amount=-estimate.total_cost,
            balance_after=account.skip_trace_wallet_balance,
            created_at=now,
        ))
        logger.info(f"[ExecuteBatch] Wallet updated: {previous} -> {account.skip_trace_wallet_balance}")

        for tracking in to_trace:
            tracking.skip_traced_at = now
            result = traces.get(tracking.id)
            if result is None:
                continue
            self.db.add(SkipTraceDB(
                id=str(uuid4()),
                account_id=account.id,
                tracking_id=tracking.id,
                batch_id=batch.id,
                owner_id=tracking.property.owner_id if tracking.property else None,
                phone1=result.phone1,
                phone1_type=result.phone1_type,
                phone2=result.phone2,
                phone2_type=result.phone2_type,
                email1=result.email1,
                provider=self.provider.name,
                cost=estimate.rate_per_record,
                created_at=now,
            ))

        batch.skip_trace_count = estimate.eligible_count
        batch.skip_trace_cost = estimate.total_cost

    @staticmethod
    def _apply_touches(members: List[TrackingDB], config: AccountConfig, now: datetime) -> None:
        """Exactly one touch per member, independent of tracing outcome."""
        for tracking in members:
            tracking.touch_count = (tracking.touch_count or 0) + 1
            tracking.last_touch_at = now
            tracking.next_eligible_at = now + timedelta(days=config.cadence.for_lane(tracking.lane).days_between)
            redecay(tracking)

    def redownload(self, account_id: str, batch_id: str) -> ExecutionResult:
        """Re-export an executed batch. Increments download_count only."""
        get_account(self.db, account_id)
        batch = self.db.query(WeeklyBatchDB).filter(
            WeeklyBatchDB.id == batch_id,
            WeeklyBatchDB.account_id == account_id,
        ).first()
        if batch is None:
            raise NotFound("batch", batch_id)
        if batch.status != BatchStatus.DOWNLOADED:
            raise ValidationError(f"Batch {batch.batch_code} is {batch.status.value}; execute it first")

        try:
            batch.download_count = (batch.download_count or 0) + 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return ExecutionResult(batch=batch, records=self.build_export(batch))

    # =========================================================================
    # EXPORT
    # =========================================================================

    def _latest_traces(self, tracking_ids: List[str]) -> Dict[str, SkipTraceDB]:
        if not tracking_ids:
            return {}
        rows = self.db.query(SkipTraceDB).filter(
            SkipTraceDB.tracking_id.in_(tracking_ids)
        ).order_by(SkipTraceDB.created_at.asc()).all()
        return {row.tracking_id: row for row in rows}  # later rows win

    def build_export(self, batch: WeeklyBatchDB) -> List[ExportRecord]:
        """Ordered export payload for a batch, with trace fields where known."""
        records = [r for r in batch.records if r.tracking is not None and r.tracking.status.is_cycle_managed]
        traces = self._latest_traces([r.tracking_id for r in records])

        export = []
        for record in records:
            tracking = record.tracking
            prop = tracking.property
            owner = prop.owner if prop else None
            trace = traces.get(tracking.id)
            export.append(ExportRecord(
                rank=record.rank,
                tracking_id=tracking.id,
                property_id=record.property_id,
                address_line1=prop.address_line1 if prop else "",
                address_city=prop.address_city if prop else None,
                address_state=prop.address_state if prop else None,
                address_postal_code=prop.address_postal_code if prop else None,
                owner_name=owner.full_name if owner else None,
                lane=record.lane,
                source_type=record.source_type,
                final_allocation_points=record.final_allocation_points,
                touch_count=tracking.touch_count,
                matched_signals=list(tracking.matched_signals or []),
                phone1=trace.phone1 if trace else None,
                phone1_type=trace.phone1_type if trace else None,
                phone2=trace.phone2 if trace else None,
                phone2_type=trace.phone2_type if trace else None,
                email1=trace.email1 if trace else None,
            ))
        return export

    # =========================================================================
    # WALLET
    # =========================================================================

    def credit_wallet(self, account_id: str, amount, protocol_event: str = WALLET_LOAD_EVENT) -> WalletTransactionDB:
        """Append a positive load recorded by the billing layer."""
        value = to_money(amount)
        if value <= 0:
            raise ValidationError(f"Wallet credit must be positive, got {value}")
        if not protocol_event:
            raise ValidationError("protocol_event is required")

        account = get_account(self.db, account_id, for_update=True)
        try:
            account.skip_trace_wallet_balance = to_money(account.skip_trace_wallet_balance or 0) + value
            transaction = WalletTransactionDB(
                id=str(uuid4()),
                account_id=account.id,
                protocol_event=protocol_event,
                settlement_amount=value,
                balance_after=account.skip_trace_wallet_balance,
                created_at=self.clock(),
            )
            self.db.add(transaction)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Wallet credit for account {account_id}: +{value} ({protocol_event})")
        return transaction

    def get_wallet(self, account_id: str) -> WalletView:
        account = get_account(self.db, account_id)
        rows = self.db.query(WalletTransactionDB).filter(
            WalletTransactionDB.account_id == account_id
        ).order_by(WalletTransactionDB.created_at.desc()).all()

        return WalletView(
            account_id=account.id,
            balance=to_money(account.skip_trace_wallet_balance or 0),
            transactions=[
                {
                    "id": row.id,
                    "protocol_event": row.protocol_event,
                    "settlement_amount": to_money(row.settlement_amount),
                    "balance_after": to_money(row.balance_after),
                    "batch_id": row.batch_id,
                    "timestamp": row.created_at.isoformat() if row.created_at else None,
                }
                for row in rows
            ],
        )
