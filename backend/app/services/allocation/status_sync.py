"""
Status Signal Service

Contract for the external collaborators that drive administrative
statuses: MLS listing feeds, sale records and suppression-list imports.
The weekly cycle never enters these states itself; it only honors them
as hard exclusions.

AUTHORITY: FEED (suppression/removal), ADMIN (lifting a suppression)
"""
import logging
import re
from typing import Iterable, List, Optional, Set
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    PropertyDB, TrackingDB, SkipTraceDB, TrackingStatus, SuppressionType,
    ActorType, Lane,
)
from .account_config import get_account
from .cadence import CadenceStateMachine
from .errors import InvalidTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)

FEED_STATUSES = {
    TrackingStatus.SUPPRESSED,
    TrackingStatus.CONTACT_CONSTRAINED,
    TrackingStatus.REMOVED_SOLD,
    TrackingStatus.REMOVED_LISTED,
}

_NON_DIGITS = re.compile(r"\D+")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    """Case- and whitespace-insensitive match key."""
    return _WHITESPACE.sub(" ", (value or "").strip()).lower()


def normalize_phone(value: Optional[str]) -> str:
    """Digits only, US country code dropped."""
    digits = _NON_DIGITS.sub("", value or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


class StatusSignalService:
    """
    Applies administrative statuses to tracking entities.

    Every change goes through the cadence state machine, so the event
    log records it and terminal Removed states cannot be left.
    """

    def __init__(self, db: Session):
        self.db = db
        self.state_machine = CadenceStateMachine(db)

    def _get_property(self, property_id: str) -> PropertyDB:
        prop = self.db.query(PropertyDB).filter(PropertyDB.id == property_id).first()
        if prop is None:
            raise NotFound("property", property_id)
        return prop

    def _get_or_create_tracking(self, account_id: str, prop: PropertyDB) -> TrackingDB:
        tracking = self.db.query(TrackingDB).filter(
            TrackingDB.account_id == account_id,
            TrackingDB.property_id == prop.id,
        ).first()
        if tracking is not None:
            return tracking

        tracking = TrackingDB(
            id=str(uuid4()),
            account_id=account_id,
            property_id=prop.id,
            lane=Lane.NURTURE,
            status=TrackingStatus.ACTIVE,
            base_score=0.0,
            effective_score=0.0,
            final_allocation_points=0.0,
            matched_signals=[],
            touch_count=0,
        )
        tracking.property = prop
        self.db.add(tracking)
        self.state_machine.record_event(
            tracking, None, TrackingStatus.ACTIVE,
            trigger="tracking_created", actor=ActorType.FEED,
        )
        return tracking

    def _apply(
        self,
        tracking: TrackingDB,
        status: TrackingStatus,
        trigger: str,
        reason: Optional[str],
        actor: ActorType = ActorType.FEED,
    ) -> bool:
        """Transition one entity. Returns False when it is already in `status`."""
        if tracking.status == status:
            return False
        ok, message = self.state_machine.transition(
            tracking, status, trigger=trigger, actor=actor, metadata={"reason": reason},
        )
        if not ok:
            raise InvalidTransition(message)
        tracking.status_reason = reason
        return True

    # =========================================================================
    # SINGLE-RECORD SIGNALS
    # =========================================================================

    def apply_status_signal(
        self,
        account_id: str,
        property_id: str,
        status: TrackingStatus,
        reason: Optional[str] = None,
    ) -> TrackingDB:
        """Set an administrative status on one (account, property) pair."""
        if status not in FEED_STATUSES:
            raise ValidationError(f"{status.value} cannot be set by a status feed")

        get_account(self.db, account_id)
        prop = self._get_property(property_id)

        try:
            tracking = self._get_or_create_tracking(account_id, prop)
            if self._apply(tracking, status, trigger="status_feed", reason=reason):
                logger.info(f"Tracking {tracking.id} -> {status.value} ({reason})")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return tracking

    def lift_suppression(self, account_id: str, property_id: str) -> TrackingDB:
        """Suppressed/ContactConstrained -> Active. Touch history is kept."""
        get_account(self.db, account_id)
        tracking = self.db.query(TrackingDB).filter(
            TrackingDB.account_id == account_id,
            TrackingDB.property_id == property_id,
        ).first()
        if tracking is None:
            raise NotFound("tracking", f"{account_id}/{property_id}")
        if tracking.status not in (TrackingStatus.SUPPRESSED, TrackingStatus.CONTACT_CONSTRAINED):
            raise InvalidTransition(f"Tracking is {tracking.status.value}; nothing to lift")

        try:
            self._apply(tracking, TrackingStatus.ACTIVE, trigger="suppression_lifted", reason=None, actor=ActorType.ADMIN)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return tracking

    def mark_property_removed(self, property_id: str, status: TrackingStatus, reason: Optional[str] = None) -> int:
        """
        Sale/listing feeds are account-independent: remove the property
        from every account that tracks it. Returns the number changed.
        """
        if not status.is_removed:
            raise ValidationError(f"{status.value} is not a removal status")
        self._get_property(property_id)

        trackings = self.db.query(TrackingDB).filter(TrackingDB.property_id == property_id).all()
        changed = 0
        try:
            for tracking in trackings:
                if tracking.status.is_removed:
                    continue
                if self._apply(tracking, status, trigger="removal_feed", reason=reason):
                    changed += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Property {property_id} marked {status.value} on {changed} tracking record(s)")
        return changed

    # =========================================================================
    # SUPPRESSION LIST IMPORT
    # =========================================================================

    def apply_suppression_entries(
        self,
        account_id: str,
        suppression_type: SuppressionType,
        values: Iterable[str],
        list_name: Optional[str] = None,
    ) -> int:
        """
        Match a suppression list against the account's tracked records.

        address / owner_name -> Suppressed
        phone (against stored skip-trace phones) -> ContactConstrained

        Removed records are left alone. Returns the number transitioned.
        """
        get_account(self.db, account_id)

        if suppression_type == SuppressionType.PHONE:
            keys = {normalize_phone(v) for v in values}
        else:
            keys = {normalize_text(v) for v in values}
        keys.discard("")
        if not keys:
            return 0

        trackings = self.db.query(TrackingDB).filter(TrackingDB.account_id == account_id).all()
        matched = self._match(account_id, trackings, suppression_type, keys)

        target = (
            TrackingStatus.CONTACT_CONSTRAINED
            if suppression_type == SuppressionType.PHONE
            else TrackingStatus.SUPPRESSED
        )
        reason = f"{suppression_type.value} suppression" + (f": {list_name}" if list_name else "")

        changed = 0
        try:
            for tracking in matched:
                if tracking.status.is_removed:
                    continue
                if self._apply(tracking, target, trigger="suppression_list", reason=reason):
                    changed += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Suppression import for account {account_id}: {len(keys)} {suppression_type.value} "
            f"entries, {changed} record(s) transitioned"
        )
        return changed

    def _match(
        self,
        account_id: str,
        trackings: List[TrackingDB],
        suppression_type: SuppressionType,
        keys: Set[str],
    ) -> List[TrackingDB]:
        if suppression_type == SuppressionType.ADDRESS:
            return [
                t for t in trackings
                if t.property is not None and normalize_text(t.property.address_line1) in keys
            ]

        if suppression_type == SuppressionType.OWNER_NAME:
            return [
                t for t in trackings
                if t.property is not None and t.property.owner is not None
                and normalize_text(t.property.owner.full_name) in keys
            ]

        traces = self.db.query(SkipTraceDB).filter(SkipTraceDB.account_id == account_id).all()
        hit_ids = {
            row.tracking_id for row in traces
            if normalize_phone(row.phone1) in keys or normalize_phone(row.phone2) in keys
        }
        return [t for t in trackings if t.id in hit_ids]
