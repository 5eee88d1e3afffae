"""
Signal Catalog

Static reference mapping a distress-signal key to its conversion-rate
weight, default lane and urgency flag. Rows are edited only through
configuration (admin routes, seed script). A cycle works from an
immutable snapshot loaded once at the start of the cycle.
"""
import logging
import math
from typing import Any, Dict, Iterable, Iterator, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import DistressSignalDB, Lane
from ...models.allocation_models import SignalEntry
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# REFERENCE CATALOG
# =============================================================================

DEFAULT_SIGNALS = [
    # key, display name, weight, lane, time-sensitive
    ("foreclosure", "Foreclosure", 0.0111, Lane.BLITZ, True),
    ("pre-foreclosure", "Pre-Foreclosure", 0.0095, Lane.BLITZ, True),
    ("probate", "Probate", 0.0092, Lane.CHASE, False),
    ("tax-sale", "Tax Sale", 0.0085, Lane.BLITZ, True),
    ("vacant", "Vacant", 0.0073, Lane.CHASE, False),
    ("divorce", "Divorce", 0.0068, Lane.CHASE, False),
    ("absentee", "Absentee Owner", 0.0046, Lane.NURTURE, False),
    ("bankruptcy", "Bankruptcy", 0.0085, Lane.BLITZ, True),
]

EDITABLE_FIELDS = {
    "display_name", "description", "base_conversion_rate",
    "default_lane", "is_time_sensitive", "is_active",
}


class SignalCatalog:
    """
    Immutable key -> SignalEntry lookup.

    Inactive signals stay in the snapshot (for dashboards) but
    `get_active` treats them like unknown keys.
    """

    def __init__(self, entries: Iterable[SignalEntry]):
        self._entries: Dict[str, SignalEntry] = {e.signal_key: e for e in entries}

    @classmethod
    def load(cls, db: Session) -> "SignalCatalog":
        rows = db.query(DistressSignalDB).all()
        return cls(
            SignalEntry(
                signal_key=row.signal_key,
                display_name=row.display_name,
                base_conversion_rate=row.base_conversion_rate,
                default_lane=row.default_lane,
                is_time_sensitive=bool(row.is_time_sensitive),
                is_active=bool(row.is_active),
            )
            for row in rows
        )

    @classmethod
    def default(cls) -> "SignalCatalog":
        """The reference catalog without touching the database."""
        return cls(
            SignalEntry(key, name, weight, lane, urgent)
            for key, name, weight, lane, urgent in DEFAULT_SIGNALS
        )

    def get(self, signal_key: str) -> Optional[SignalEntry]:
        return self._entries.get(signal_key)

    def get_active(self, signal_key: str) -> Optional[SignalEntry]:
        entry = self._entries.get(signal_key)
        if entry is None or not entry.is_active:
            return None
        return entry

    def __contains__(self, signal_key: str) -> bool:
        return signal_key in self._entries

    def __iter__(self) -> Iterator[SignalEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# CONFIGURATION OPERATIONS
# =============================================================================

def validate_signal_fields(fields: dict) -> dict:
    """Normalize and check an admin edit. Returns the cleaned field dict."""
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown signal fields: {sorted(unknown)}")

    cleaned = dict(fields)
    if "base_conversion_rate" in cleaned:
        rate = cleaned["base_conversion_rate"]
        if rate is None or not math.isfinite(float(rate)) or float(rate) <= 0:
            raise ValidationError("base_conversion_rate must be greater than zero")
        cleaned["base_conversion_rate"] = float(rate)

    if "default_lane" in cleaned:
        try:
            cleaned["default_lane"] = Lane(cleaned["default_lane"])
        except ValueError:
            raise ValidationError(f"Unknown lane: {cleaned['default_lane']!r}")

    if "display_name" in cleaned and not cleaned["display_name"]:
        raise ValidationError("display_name must not be empty")

    return cleaned


def update_signal(db: Session, signal_key: str, changes: Dict[str, Any]) -> DistressSignalDB:
    """Admin edit of one catalog row. `changes` maps editable field names to new values."""
    row = db.query(DistressSignalDB).filter(DistressSignalDB.signal_key == signal_key).first()
    if row is None:
        raise NotFound("signal", signal_key)

    cleaned = validate_signal_fields(changes)
    for name, value in cleaned.items():
        setattr(row, name, value)

    db.commit()
    logger.info(f"Signal {signal_key} updated: {sorted(cleaned)}")
    return row


def seed_default_signals(db: Session) -> int:
    """Insert missing reference signals. Existing rows are not overwritten."""
    existing = {row.signal_key for row in db.query(DistressSignalDB).all()}
    created = 0
    for key, name, weight, lane, urgent in DEFAULT_SIGNALS:
        if key in existing:
            continue
        db.add(DistressSignalDB(
            id=str(uuid4()),
            signal_key=key,
            display_name=name,
            base_conversion_rate=weight,
            default_lane=lane,
            is_time_sensitive=urgent,
            is_active=True,
        ))
        created += 1
    db.flush()
    if created:
        logger.info(f"Seeded {created} distress signals")
    return created
