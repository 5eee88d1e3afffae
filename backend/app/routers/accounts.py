"""
Lead Allocation Engine - Account API Router

Weekly cycle operations for one account: refresh, batch generation,
skip-trace estimation, execution and re-download, plus the read-only
tracking and wallet views and the status-feed inputs.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..dependencies import get_lead_engine, to_http_error
from ..models.db_models import WeeklyBatchDB, TrackingDB, TrackingStatus, SuppressionType
from ..services.allocation import LeadEngine, LeadEngineError
from ..services.allocation.settlement_ledger import WALLET_LOAD_EVENT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class BatchResponse(BaseModel):
    """Weekly batch header."""
    id: str
    batch_code: str
    status: str
    week_start: str
    week_end: str
    total_records: int
    fresh_count: int
    repeat_count: int
    queue_count: int
    blitz_count: int
    chase_count: int
    nurture_count: int
    duplicate_contacts_avoided: int
    skip_trace_count: int
    skip_trace_cost: str
    generated_at: str
    first_download_at: Optional[str] = None
    download_count: int


class BatchListResponse(BaseModel):
    batches: List[BatchResponse]
    total: int


class ExecuteRequest(BaseModel):
    include_skip_trace: bool = False


class ExecutionResponse(BaseModel):
    """Executed batch plus its ordered export payload."""
    batch: BatchResponse
    records: List[dict]


class EstimateResponse(BaseModel):
    eligible_count: int
    already_traced_count: int
    rate_per_record: str
    total_cost: str
    batch_id: Optional[str] = None


class TrackingItem(BaseModel):
    id: str
    property_id: str
    lane: str
    status: str
    status_reason: Optional[str] = None
    base_score: float
    final_allocation_points: float
    matched_signals: List[str]
    touch_count: int
    last_touch_at: Optional[str] = None
    next_eligible_at: Optional[str] = None
    cooldown_end_at: Optional[str] = None


class TrackingListResponse(BaseModel):
    records: List[TrackingItem]
    total: int


class TrackingSummaryResponse(BaseModel):
    active: int
    cooling_down: int
    removed: int
    suppressed: int
    contact_constrained: int


class WalletTransaction(BaseModel):
    id: str
    protocol_event: str
    settlement_amount: str
    balance_after: str
    batch_id: Optional[str] = None
    timestamp: Optional[str] = None


class WalletResponse(BaseModel):
    account_id: str
    balance: str
    transactions: List[WalletTransaction]


class WalletCreditRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    protocol_event: str = WALLET_LOAD_EVENT


class StatusSignalRequest(BaseModel):
    """External status feed input (MLS, sale record, suppression)."""
    property_id: str
    status: str  # Suppressed, ContactConstrained, RemovedSold, RemovedListed
    reason: Optional[str] = None


class SuppressionImportRequest(BaseModel):
    suppression_type: str  # address, phone, owner_name
    values: List[str]
    list_name: Optional[str] = None


# =============================================================================
# SERIALIZATION
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def batch_to_response(batch: WeeklyBatchDB) -> BatchResponse:
    return BatchResponse(
        id=batch.id,
        batch_code=batch.batch_code,
        status=batch.status.value,
        week_start=batch.week_start.isoformat(),
        week_end=batch.week_end.isoformat(),
        total_records=batch.total_records or 0,
        fresh_count=batch.fresh_count or 0,
        repeat_count=batch.repeat_count or 0,
        queue_count=batch.queue_count or 0,
        blitz_count=batch.blitz_count or 0,
        chase_count=batch.chase_count or 0,
        nurture_count=batch.nurture_count or 0,
        duplicate_contacts_avoided=batch.duplicate_contacts_avoided or 0,
        skip_trace_count=batch.skip_trace_count or 0,
        skip_trace_cost=str(batch.skip_trace_cost or Decimal("0.00")),
        generated_at=batch.generated_at.isoformat(),
        first_download_at=_iso(batch.first_download_at),
        download_count=batch.download_count or 0,
    )


def tracking_to_item(tracking: TrackingDB) -> TrackingItem:
    return TrackingItem(
        id=tracking.id,
        property_id=tracking.property_id,
        lane=tracking.lane.value,
        status=tracking.status.value,
        status_reason=tracking.status_reason,
        base_score=tracking.base_score or 0.0,
        final_allocation_points=tracking.final_allocation_points or 0.0,
        matched_signals=list(tracking.matched_signals or []),
        touch_count=tracking.touch_count or 0,
        last_touch_at=_iso(tracking.last_touch_at),
        next_eligible_at=_iso(tracking.next_eligible_at),
        cooldown_end_at=_iso(tracking.cooldown_end_at),
    )


# =============================================================================
# CYCLE ENDPOINTS
# =============================================================================

@router.post("/{account_id}/refresh", response_model=dict)
def refresh_account(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    """Re-run filtering, scoring and cadence transitions without generating a batch."""
    try:
        report = engine.refresh_scores(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return report.to_dict()


@router.post("/{account_id}/batches", response_model=BatchResponse)
def generate_batch(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    """
    Generate this week's batch.

    A previous batch that was never downloaded is superseded (Archived).
    """
    try:
        batch = engine.generate_batch(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return batch_to_response(batch)


@router.get("/{account_id}/batches", response_model=BatchListResponse)
def list_batches(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    try:
        batches = engine.get_batches(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return BatchListResponse(batches=[batch_to_response(b) for b in batches], total=len(batches))


@router.get("/{account_id}/skip-trace/estimate", response_model=EstimateResponse)
def estimate_skip_trace(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    try:
        estimate = engine.estimate_skip_trace(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return EstimateResponse(**estimate.to_dict())


@router.post("/{account_id}/batches/execute", response_model=ExecutionResponse)
def execute_batch(
    account_id: str,
    request: ExecuteRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    """
    Execute the current batch (generating one if needed).

    Returns 402 when skip-trace enrichment is requested and the wallet
    cannot cover it. Nothing is debited or touched in that case.
    """
    try:
        result = engine.execute_batch(account_id, include_skip_trace=request.include_skip_trace)
    except LeadEngineError as e:
        raise to_http_error(e)
    return ExecutionResponse(
        batch=batch_to_response(result.batch),
        records=[r.to_dict() for r in result.records],
    )


@router.post("/{account_id}/batches/{batch_id}/download", response_model=ExecutionResponse)
def redownload_batch(account_id: str, batch_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    """Re-export an executed batch. No touches, no charges."""
    try:
        result = engine.redownload_batch(account_id, batch_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return ExecutionResponse(
        batch=batch_to_response(result.batch),
        records=[r.to_dict() for r in result.records],
    )


# =============================================================================
# DASHBOARD VIEWS (READ-ONLY)
# =============================================================================

@router.get("/{account_id}/tracking", response_model=TrackingListResponse)
def list_tracking(
    account_id: str,
    status: Optional[str] = None,
    engine: LeadEngine = Depends(get_lead_engine),
):
    status_filter = None
    if status is not None:
        try:
            status_filter = TrackingStatus(status)
        except ValueError:
            valid = [s.value for s in TrackingStatus]
            raise HTTPException(status_code=422, detail=f"Invalid status. Must be one of: {valid}")

    try:
        records = engine.get_tracking(account_id, status=status_filter)
    except LeadEngineError as e:
        raise to_http_error(e)
    return TrackingListResponse(records=[tracking_to_item(t) for t in records], total=len(records))


@router.get("/{account_id}/tracking/summary", response_model=TrackingSummaryResponse)
def tracking_summary(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    try:
        summary = engine.get_tracking_summary(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return TrackingSummaryResponse(**summary)


@router.get("/{account_id}/wallet", response_model=WalletResponse)
def get_wallet(account_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    try:
        wallet = engine.get_wallet(account_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return WalletResponse(
        account_id=wallet.account_id,
        balance=str(wallet.balance),
        transactions=[
            WalletTransaction(
                id=t["id"],
                protocol_event=t["protocol_event"],
                settlement_amount=str(t["settlement_amount"]),
                balance_after=str(t["balance_after"]),
                batch_id=t["batch_id"],
                timestamp=t["timestamp"],
            )
            for t in wallet.transactions
        ],
    )


@router.post("/{account_id}/wallet/credits", response_model=dict)
def credit_wallet(
    account_id: str,
    request: WalletCreditRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    """Record a wallet load. Payment capture happens upstream."""
    try:
        transaction = engine.credit_wallet(account_id, request.amount, request.protocol_event)
    except LeadEngineError as e:
        raise to_http_error(e)
    return {
        "id": transaction.id,
        "settlement_amount": str(transaction.settlement_amount),
        "balance_after": str(transaction.balance_after),
    }


# =============================================================================
# STATUS FEEDS
# =============================================================================

@router.post("/{account_id}/status-signals", response_model=TrackingItem)
def apply_status_signal(
    account_id: str,
    request: StatusSignalRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    try:
        status = TrackingStatus(request.status)
    except ValueError:
        valid = [s.value for s in TrackingStatus]
        raise HTTPException(status_code=422, detail=f"Invalid status. Must be one of: {valid}")

    try:
        tracking = engine.apply_status_signal(account_id, request.property_id, status, request.reason)
    except LeadEngineError as e:
        raise to_http_error(e)
    return tracking_to_item(tracking)


@router.delete("/{account_id}/status-signals/{property_id}", response_model=TrackingItem)
def lift_suppression(account_id: str, property_id: str, engine: LeadEngine = Depends(get_lead_engine)):
    """Return a suppressed or contact-constrained record to Active."""
    try:
        tracking = engine.lift_suppression(account_id, property_id)
    except LeadEngineError as e:
        raise to_http_error(e)
    return tracking_to_item(tracking)


@router.post("/{account_id}/suppressions", response_model=dict)
def import_suppression_list(
    account_id: str,
    request: SuppressionImportRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    try:
        suppression_type = SuppressionType(request.suppression_type)
    except ValueError:
        valid = [s.value for s in SuppressionType]
        raise HTTPException(status_code=422, detail=f"Invalid suppression_type. Must be one of: {valid}")

    try:
        changed = engine.apply_suppression_entries(
            account_id, suppression_type, request.values, request.list_name,
        )
    except LeadEngineError as e:
        raise to_http_error(e)
    return {
        "suppression_type": suppression_type.value,
        "entries": len(request.values),
        "records_transitioned": changed,
    }
