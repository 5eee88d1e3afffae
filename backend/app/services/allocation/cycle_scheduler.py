"""
Weekly Cycle Scheduler

AUTHORITY: SYSTEM
Generates the weekly batch for every account whose configured cycle day
and time have arrived. One account's failure never stops the others.
"""
import logging
from datetime import datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import AccountDB, AccountStatus, WeeklyBatchDB, utcnow
from .errors import LeadEngineError
from .lead_engine import LeadEngine

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
DEFAULT_CYCLE_TIME = time(0, 0)


def parse_cycle_time(raw: Optional[str]) -> time:
    """'08:00' -> time(8, 0). Missing means midnight."""
    if not raw:
        return DEFAULT_CYCLE_TIME
    hours, _, minutes = raw.partition(":")
    return time(int(hours), int(minutes or 0))


class WeeklyCycleScheduler:
    """
    Recurring per-account batch generation.

    An account is due when:
    - it is Onboarding or Active
    - its cycle_day is today and cycle_time has passed
    - no batch has been generated since the start of the cycle day
    """

    def __init__(self, db_session: Session, engine: LeadEngine):
        """Initialize with database session and the engine facade."""
        self.db = db_session
        self.engine = engine

    def is_due(self, account: AccountDB, now: datetime) -> bool:
        if not account.cycle_day:
            return False
        if account.cycle_day.strip().lower() != WEEKDAYS[now.weekday()]:
            return False

        if now < datetime.combine(now.date(), parse_cycle_time(account.cycle_time)):
            return False

        day_start = datetime.combine(now.date(), time.min)
        already = self.db.query(WeeklyBatchDB).filter(
            WeeklyBatchDB.account_id == account.id,
            WeeklyBatchDB.generated_at >= day_start,
        ).count()
        return already == 0

    def due_accounts(self, now: datetime) -> List[AccountDB]:
        accounts = self.db.query(AccountDB).filter(
            AccountDB.status.in_([AccountStatus.ONBOARDING, AccountStatus.ACTIVE])
        ).order_by(AccountDB.id).all()

        due = []
        for account in accounts:
            try:
                if self.is_due(account, now):
                    due.append(account)
            except ValueError:
                logger.warning(f"Account {account.id} has an invalid cycle_time {account.cycle_time!r}; skipped")
        return due

    def run_due_cycles(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Generate batches for all due accounts.

        AUTHORITY: SYSTEM - Called via the internal scheduler endpoint.
        """
        now = now or utcnow()
        generated = []
        errors = []

        for account in self.due_accounts(now):
            account_id = account.id
            try:
                batch = self.engine.generate_batch(account_id)
                generated.append({
                    "account_id": account_id,
                    "batch_id": batch.id,
                    "batch_code": batch.batch_code,
                    "total_records": batch.total_records,
                })
            except LeadEngineError as e:
                logger.warning(f"Weekly cycle for account {account_id} failed: {e}")
                errors.append({
                    "account_id": account_id,
                    "error": type(e).__name__,
                    "detail": str(e),
                })

        logger.info(f"Weekly cycle run: {len(generated)} generated, {len(errors)} failed")
        return {
            "run_date": now.isoformat(),
            "batches_generated": len(generated),
            "errors": len(errors),
            "details": {
                "generated": generated,
                "errors": errors,
            },
        }
