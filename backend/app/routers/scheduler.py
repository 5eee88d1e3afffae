"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Weekly batch generation for accounts whose cycle day has arrived.
"""
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_account_locks, get_skip_trace_provider
from ..services.allocation import AccountLockRegistry, LeadEngine, WeeklyCycleScheduler
from ..services.allocation.skip_trace import SkipTraceProvider


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/weekly-cycle", response_model=dict)
def run_weekly_cycle(
    as_of: Optional[datetime] = None,
    db: Session = Depends(get_db),
    locks: AccountLockRegistry = Depends(get_account_locks),
    provider: SkipTraceProvider = Depends(get_skip_trace_provider),
):
    """
    Run the weekly cycle for every due account.

    System-automatic - called by cron. `as_of` replays a past run;
    omitted means now.
    """
    clock = None
    if as_of is not None:
        if as_of.tzinfo is not None:
            as_of = as_of.astimezone(timezone.utc).replace(tzinfo=None)
        clock = lambda: as_of  # noqa: E731

    engine = LeadEngine(db, provider=provider, locks=locks, clock=clock)
    scheduler = WeeklyCycleScheduler(db, engine)

    return scheduler.run_due_cycles(as_of)
