"""
Lead Allocation Engine - Admin Router
Configuration console: distress-signal catalog, system defaults and
account-independent removal feeds.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_lead_engine, to_http_error
from ..models.db_models import DistressSignalDB, SystemDefaultDB, TrackingStatus
from ..services.allocation import (
    LeadEngine, LeadEngineError, update_signal, update_system_default,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class SignalItem(BaseModel):
    """Distress signal catalog row."""
    signal_key: str
    display_name: str
    description: Optional[str] = None
    base_conversion_rate: float
    default_lane: str
    is_time_sensitive: bool
    is_active: bool


class SignalUpdateRequest(BaseModel):
    """Partial edit; omitted fields are left unchanged."""
    display_name: Optional[str] = None
    description: Optional[str] = None
    base_conversion_rate: Optional[float] = None
    default_lane: Optional[str] = None
    is_time_sensitive: Optional[bool] = None
    is_active: Optional[bool] = None


class SystemDefaultItem(BaseModel):
    setting_key: str
    setting_value: str
    data_type: str
    description: Optional[str] = None


class SystemDefaultUpdateRequest(BaseModel):
    setting_value: str


class RemovalRequest(BaseModel):
    status: str  # RemovedSold, RemovedListed
    reason: Optional[str] = None


def signal_to_item(row: DistressSignalDB) -> SignalItem:
    return SignalItem(
        signal_key=row.signal_key,
        display_name=row.display_name,
        description=row.description,
        base_conversion_rate=row.base_conversion_rate,
        default_lane=row.default_lane.value,
        is_time_sensitive=bool(row.is_time_sensitive),
        is_active=bool(row.is_active),
    )


def default_to_item(row: SystemDefaultDB) -> SystemDefaultItem:
    return SystemDefaultItem(
        setting_key=row.setting_key,
        setting_value=row.setting_value,
        data_type=row.data_type.value,
        description=row.description,
    )


# =============================================================================
# SIGNAL CATALOG
# =============================================================================

@router.get("/signals", response_model=List[SignalItem])
async def list_signals(db: Session = Depends(get_db)):
    rows = db.query(DistressSignalDB).order_by(DistressSignalDB.base_conversion_rate.desc()).all()
    return [signal_to_item(row) for row in rows]


@router.patch("/signals/{signal_key}", response_model=SignalItem)
async def edit_signal(
    signal_key: str,
    request: SignalUpdateRequest,
    db: Session = Depends(get_db),
):
    """
    Edit a catalog row. Takes effect at the next cycle; running cycles
    keep the snapshot they loaded.
    """
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")

    try:
        row = update_signal(db, signal_key, changes)
    except LeadEngineError as e:
        raise to_http_error(e)
    return signal_to_item(row)


# =============================================================================
# SYSTEM DEFAULTS
# =============================================================================

@router.get("/system-defaults", response_model=List[SystemDefaultItem])
async def list_system_defaults(db: Session = Depends(get_db)):
    rows = db.query(SystemDefaultDB).order_by(SystemDefaultDB.setting_key).all()
    return [default_to_item(row) for row in rows]


@router.put("/system-defaults/{setting_key}", response_model=SystemDefaultItem)
async def edit_system_default(
    setting_key: str,
    request: SystemDefaultUpdateRequest,
    db: Session = Depends(get_db),
):
    try:
        row = update_system_default(db, setting_key, request.setting_value)
    except LeadEngineError as e:
        raise to_http_error(e)
    return default_to_item(row)


# =============================================================================
# REMOVAL FEEDS
# =============================================================================

@router.post("/properties/{property_id}/removal", response_model=dict)
def mark_property_removed(
    property_id: str,
    request: RemovalRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    """Sale or MLS listing: removes the property from every account's marketing."""
    try:
        status = TrackingStatus(request.status)
    except ValueError:
        raise HTTPException(status_code=422, detail="status must be RemovedSold or RemovedListed")

    try:
        changed = engine.mark_property_removed(property_id, status, request.reason)
    except LeadEngineError as e:
        raise to_http_error(e)
    return {
        "property_id": property_id,
        "status": status.value,
        "records_transitioned": changed,
    }
