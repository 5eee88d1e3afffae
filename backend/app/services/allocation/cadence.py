"""
Cadence / Cooldown State Machine

Deterministic state machine for the per-account record lifecycle.
The weekly cycle only moves records between Active and CoolingDown;
administrative states are entered from external feeds (see status_sync)
and are hard exclusions everywhere else.
All transitions are logged immutably.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...models.db_models import TrackingDB, TrackingEventDB, TrackingStatus, ActorType
from ...models.allocation_models import CadencePolicy
from .scoring import redecay

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - SYSTEM: the weekly cycle (cooldown entry/exit)
# - FEED: external collaborators (MLS listing, sale record, suppression list)
# - ADMIN: manual lifts of a suppression
#
# Removed states are terminal.
#
# =============================================================================

_ADMINISTRATIVE_TARGETS = [
    TrackingStatus.SUPPRESSED,
    TrackingStatus.CONTACT_CONSTRAINED,
    TrackingStatus.REMOVED_SOLD,
    TrackingStatus.REMOVED_LISTED,
]

STATE_CONFIG = {
    TrackingStatus.ACTIVE: {
        "description": "Eligible for scoring and selection",
        "allowed_transitions": [TrackingStatus.COOLING_DOWN] + _ADMINISTRATIVE_TARGETS,
        "entry_authority": "SYSTEM",
    },
    TrackingStatus.COOLING_DOWN: {
        "description": "Resting until cooldown_end_at, ineligible for selection",
        "allowed_transitions": [TrackingStatus.ACTIVE] + _ADMINISTRATIVE_TARGETS,
        "entry_authority": "SYSTEM",
    },
    TrackingStatus.SUPPRESSED: {
        "description": "Matched a suppression list",
        "allowed_transitions": [
            TrackingStatus.ACTIVE,
            TrackingStatus.CONTACT_CONSTRAINED,
            TrackingStatus.REMOVED_SOLD,
            TrackingStatus.REMOVED_LISTED,
        ],
        "entry_authority": "FEED",
    },
    TrackingStatus.CONTACT_CONSTRAINED: {
        "description": "Contact channel restricted (do-not-call match)",
        "allowed_transitions": [
            TrackingStatus.ACTIVE,
            TrackingStatus.SUPPRESSED,
            TrackingStatus.REMOVED_SOLD,
            TrackingStatus.REMOVED_LISTED,
        ],
        "entry_authority": "FEED",
    },
    TrackingStatus.REMOVED_SOLD: {
        "description": "Property sold - removed from marketing",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "FEED",
    },
    TrackingStatus.REMOVED_LISTED: {
        "description": "Property listed on MLS - removed from marketing",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "FEED",
    },
}


def cooldown_end(start: datetime, months: int) -> datetime:
    """Calendar-month offset (Jan 31 + 1 month = Feb 28/29)."""
    return start + relativedelta(months=months)


# =============================================================================
# STATE MACHINE
# =============================================================================

class CadenceStateMachine:
    """
    Tracking-status state machine.

    Core Principles:
    - Cooldown exit is evaluated before cooldown entry, every cycle
    - A cooldown exit resets touch_count so the record re-enters as fresh
    - Administrative statuses are never entered or left by the cycle
    - All transitions are logged immutably
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def get_state_config(self, status: TrackingStatus) -> Dict[str, Any]:
        """Get configuration for a state."""
        return STATE_CONFIG.get(status, {})

    def can_transition(
        self,
        from_status: TrackingStatus,
        to_status: TrackingStatus
    ) -> Tuple[bool, str]:
        """
        Check if a status transition is allowed.

        Returns (allowed, reason)
        """
        config = self.get_state_config(from_status)
        if to_status in config.get("allowed_transitions", []):
            return True, "Transition allowed"

        return False, f"Cannot transition from {from_status.value} to {to_status.value}"

    def is_terminal_state(self, status: TrackingStatus) -> bool:
        """Check if a state is terminal (no further transitions)."""
        config = self.get_state_config(status)
        return len(config.get("allowed_transitions", [])) == 0

    def record_event(
        self,
        tracking: TrackingDB,
        from_status: Optional[TrackingStatus],
        to_status: TrackingStatus,
        trigger: str,
        actor: ActorType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TrackingEventDB:
        """Append an immutable event row."""
        event = TrackingEventDB(
            id=str(uuid4()),
            tracking_id=tracking.id,
            from_status=from_status,
            to_status=to_status,
            trigger=trigger,
            actor=actor,
            event_metadata=metadata or {},
        )
        self.db.add(event)
        return event

    def transition(
        self,
        tracking: TrackingDB,
        to_status: TrackingStatus,
        trigger: str,
        actor: ActorType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bool, str]:
        """
        Execute a status transition.

        Returns (success, message)
        """
        from_status = tracking.status

        allowed, reason = self.can_transition(from_status, to_status)
        if not allowed:
            return False, reason

        self.record_event(tracking, from_status, to_status, trigger, actor, metadata)
        tracking.status = to_status

        return True, f"Transitioned to {to_status.value}"

    # =========================================================================
    # CYCLE TRANSITIONS (SYSTEM)
    # =========================================================================

    def exit_cooldown(self, tracking: TrackingDB, now: datetime) -> bool:
        """CoolingDown -> Active once cooldown_end_at has passed."""
        if tracking.status != TrackingStatus.COOLING_DOWN:
            return False
        if tracking.cooldown_end_at is None or now < tracking.cooldown_end_at:
            return False

        ok, _ = self.transition(
            tracking,
            TrackingStatus.ACTIVE,
            trigger="cooldown_expired",
            actor=ActorType.SYSTEM,
            metadata={
                "cooldown_start_at": tracking.cooldown_start_at.isoformat() if tracking.cooldown_start_at else None,
                "cooldown_end_at": tracking.cooldown_end_at.isoformat(),
                "touch_count_before_reset": tracking.touch_count,
            },
        )
        if not ok:
            return False

        tracking.cooldown_start_at = None
        tracking.cooldown_end_at = None
        tracking.next_eligible_at = None
        tracking.touch_count = 0
        redecay(tracking)
        return True

    def cooldown_reason(self, tracking: TrackingDB, policy: CadencePolicy) -> Optional[str]:
        """Why an Active record must rest, or None."""
        max_touches = policy.for_lane(tracking.lane).max_touches
        if (tracking.touch_count or 0) >= max_touches:
            return "max_touches_reached"
        if (tracking.final_allocation_points or 0.0) < policy.score_floor:
            return "below_score_floor"
        return None

    def enter_cooldown(self, tracking: TrackingDB, policy: CadencePolicy, now: datetime) -> bool:
        """Active -> CoolingDown on touch ceiling or score floor."""
        if tracking.status != TrackingStatus.ACTIVE:
            return False

        reason = self.cooldown_reason(tracking, policy)
        if reason is None:
            return False

        end = cooldown_end(now, policy.cooldown_duration_months)
        ok, _ = self.transition(
            tracking,
            TrackingStatus.COOLING_DOWN,
            trigger=reason,
            actor=ActorType.SYSTEM,
            metadata={
                "touch_count": tracking.touch_count,
                "final_allocation_points": tracking.final_allocation_points,
                "lane": tracking.lane.value,
                "cooldown_end_at": end.isoformat(),
            },
        )
        if not ok:
            return False

        tracking.cooldown_start_at = now
        tracking.cooldown_end_at = end
        return True

    def evaluate_cycle(
        self,
        tracking: TrackingDB,
        policy: CadencePolicy,
        now: datetime,
    ) -> List[str]:
        """
        Run this cycle's transitions for one record, exit before entry.

        Returns the names of the transitions applied.
        """
        applied = []
        if not tracking.status.is_cycle_managed:
            return applied

        if self.exit_cooldown(tracking, now):
            applied.append("cooldown_exit")
        if self.enter_cooldown(tracking, policy, now):
            applied.append("cooldown_entry")

        if applied:
            logger.debug(f"Tracking {tracking.id}: {applied}")
        return applied
