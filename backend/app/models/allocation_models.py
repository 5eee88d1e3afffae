"""
Lead Allocation Engine - Engine Data Models

In-memory value objects passed between the allocation services.
ORM rows live in db_models; these are the immutable views and results
the services compute from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .db_models import Lane, SourceType


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class BuyBox:
    """Account property-eligibility criteria."""
    counties: Tuple[str, ...] = ()
    property_types: Tuple[str, ...] = ()
    max_price: Optional[float] = None
    min_equity: float = 0.0
    excluded_zips: str = ""


@dataclass(frozen=True)
class LaneCadence:
    """Per-lane touch spacing and ceiling."""
    days_between: int
    max_touches: int


@dataclass(frozen=True)
class CadencePolicy:
    """Resolved cadence configuration for one account."""
    lanes: Dict[Lane, LaneCadence]
    cooldown_duration_months: int
    score_floor: float

    def for_lane(self, lane: Lane) -> LaneCadence:
        return self.lanes[lane]


@dataclass(frozen=True)
class AccountConfig:
    """Everything a cycle needs to know about an account, validated."""
    account_id: str
    weekly_capacity: int
    buy_box: BuyBox
    cadence: CadencePolicy
    skip_trace_rate: Decimal


# =============================================================================
# SCORING
# =============================================================================

@dataclass(frozen=True)
class SignalEntry:
    """One catalog row, detached from the session."""
    signal_key: str
    display_name: str
    base_conversion_rate: float
    default_lane: Lane
    is_time_sensitive: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class SignalScore:
    """Output of scoring a property's signal set."""
    base_score: float
    lane: Lane
    matched_keys: Tuple[str, ...] = ()


# =============================================================================
# CYCLE / ALLOCATION RESULTS
# =============================================================================

@dataclass
class CycleReport:
    """Summary of one refresh pass over an account's universe."""
    account_id: str
    run_at: datetime
    properties_considered: int = 0
    properties_eligible: int = 0
    trackings_created: int = 0
    trackings_rescored: int = 0
    cooldowns_entered: int = 0
    cooldowns_exited: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "run_at": self.run_at.isoformat(),
            "properties_considered": self.properties_considered,
            "properties_eligible": self.properties_eligible,
            "trackings_created": self.trackings_created,
            "trackings_rescored": self.trackings_rescored,
            "cooldowns_entered": self.cooldowns_entered,
            "cooldowns_exited": self.cooldowns_exited,
        }


@dataclass
class SelectedRecord:
    """A tracking entity chosen for a batch, with its classification."""
    tracking: Any  # TrackingDB
    source_type: SourceType
    rank: int


@dataclass
class Selection:
    """Result of candidate selection, deduplication and truncation."""
    candidate_count: int
    deduplicated_count: int
    selected: List[SelectedRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.selected)

    @property
    def duplicates_avoided(self) -> int:
        return self.candidate_count - self.deduplicated_count

    @property
    def queue_count(self) -> int:
        return self.candidate_count - self.total

    def count_source(self, source_type: SourceType) -> int:
        return sum(1 for r in self.selected if r.source_type == source_type)

    def count_lane(self, lane: Lane) -> int:
        return sum(1 for r in self.selected if r.tracking.lane == lane)


# =============================================================================
# SETTLEMENT
# =============================================================================

@dataclass(frozen=True)
class SkipTraceEstimate:
    """Cost preview for enriching the current batch."""
    eligible_count: int
    already_traced_count: int
    rate_per_record: Decimal
    total_cost: Decimal
    batch_id: Optional[str] = None  # None when estimated from a preview selection

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible_count": self.eligible_count,
            "already_traced_count": self.already_traced_count,
            "rate_per_record": str(self.rate_per_record),
            "total_cost": str(self.total_cost),
            "batch_id": self.batch_id,
        }


@dataclass(frozen=True)
class TraceResult:
    """Contact fields returned by a skip-trace provider."""
    phone1: Optional[str] = None
    phone1_type: Optional[str] = None
    phone2: Optional[str] = None
    phone2_type: Optional[str] = None
    email1: Optional[str] = None


@dataclass
class ExportRecord:
    """One row of the export payload. Callers serialize it; the engine never writes files."""
    rank: int
    tracking_id: str
    property_id: str
    address_line1: str
    address_city: Optional[str]
    address_state: Optional[str]
    address_postal_code: Optional[str]
    owner_name: Optional[str]
    lane: Lane
    source_type: SourceType
    final_allocation_points: float
    touch_count: int
    matched_signals: List[str] = field(default_factory=list)
    phone1: Optional[str] = None
    phone1_type: Optional[str] = None
    phone2: Optional[str] = None
    phone2_type: Optional[str] = None
    email1: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tracking_id": self.tracking_id,
            "property_id": self.property_id,
            "address_line1": self.address_line1,
            "address_city": self.address_city,
            "address_state": self.address_state,
            "address_postal_code": self.address_postal_code,
            "owner_name": self.owner_name,
            "lane": self.lane.value,
            "source_type": self.source_type.value,
            "final_allocation_points": self.final_allocation_points,
            "touch_count": self.touch_count,
            "matched_signals": list(self.matched_signals),
            "phone1": self.phone1,
            "phone1_type": self.phone1_type,
            "phone2": self.phone2,
            "phone2_type": self.phone2_type,
            "email1": self.email1,
        }


@dataclass
class ExecutionResult:
    """Executed batch plus its ordered export payload."""
    batch: Any  # WeeklyBatchDB
    records: List[ExportRecord] = field(default_factory=list)


@dataclass
class WalletView:
    """Read-only wallet snapshot for dashboards."""
    account_id: str
    balance: Decimal
    transactions: List[Dict[str, Any]] = field(default_factory=list)
