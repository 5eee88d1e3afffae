"""
Lead Allocation Engine - Shared FastAPI dependencies
"""
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .database import get_db
from .services.allocation import (
    AccountLockRegistry,
    LeadEngine,
    LeadEngineError,
    ValidationError,
    NotFound,
    NoEligibleRecords,
    InsufficientFunds,
    InvalidTransition,
)
from .services.allocation.skip_trace import SkipTraceProvider, UnconfiguredSkipTraceProvider


def get_account_locks(request: Request) -> AccountLockRegistry:
    """Per-app lock registry, created on first use when lifespan did not run."""
    locks = getattr(request.app.state, "account_locks", None)
    if locks is None:
        locks = AccountLockRegistry()
        request.app.state.account_locks = locks
    return locks


def get_skip_trace_provider(request: Request) -> SkipTraceProvider:
    provider = getattr(request.app.state, "skip_trace_provider", None)
    return provider if provider is not None else UnconfiguredSkipTraceProvider()


def get_lead_engine(
    db: Session = Depends(get_db),
    locks: AccountLockRegistry = Depends(get_account_locks),
    provider: SkipTraceProvider = Depends(get_skip_trace_provider),
) -> LeadEngine:
    return LeadEngine(db, provider=provider, locks=locks)


def to_http_error(exc: LeadEngineError) -> HTTPException:
    """Map an engine failure onto an HTTP status."""
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InsufficientFunds):
        return HTTPException(
            status_code=402,
            detail={
                "message": str(exc),
                "balance": str(exc.balance),
                "required": str(exc.required),
            },
        )
    if isinstance(exc, (NoEligibleRecords, InvalidTransition)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
