"""
Lead Allocation Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum,
    Boolean, Date, Numeric, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp. All columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class AccountStatus(str, Enum):
    """Lifecycle of a marketing client account."""
    ONBOARDING = "Onboarding"
    ACTIVE = "Active"
    PAUSED = "Paused"
    CANCELLED = "Cancelled"

    @property
    def can_run_cycles(self) -> bool:
        return self in (AccountStatus.ONBOARDING, AccountStatus.ACTIVE)


class Lane(str, Enum):
    """Priority tier governing contact frequency and urgency."""
    BLITZ = "Blitz"
    CHASE = "Chase"
    NURTURE = "Nurture"

    @property
    def precedence(self) -> int:
        """Lower wins. Blitz > Chase > Nurture."""
        return LANE_PRECEDENCE[self]


LANE_PRECEDENCE = {
    Lane.BLITZ: 0,
    Lane.CHASE: 1,
    Lane.NURTURE: 2,
}


class TrackingStatus(str, Enum):
    """States of the per-account record lifecycle."""
    ACTIVE = "Active"
    COOLING_DOWN = "CoolingDown"
    SUPPRESSED = "Suppressed"
    CONTACT_CONSTRAINED = "ContactConstrained"
    REMOVED_SOLD = "RemovedSold"
    REMOVED_LISTED = "RemovedListed"

    @property
    def is_removed(self) -> bool:
        return self in (TrackingStatus.REMOVED_SOLD, TrackingStatus.REMOVED_LISTED)

    @property
    def is_selectable(self) -> bool:
        return self == TrackingStatus.ACTIVE

    @property
    def is_cycle_managed(self) -> bool:
        """Statuses the weekly cycle is allowed to transition."""
        return self in (TrackingStatus.ACTIVE, TrackingStatus.COOLING_DOWN)

    @property
    def is_administrative(self) -> bool:
        return not self.is_cycle_managed


class SourceType(str, Enum):
    """How a record entered a batch. Assigned at selection time."""
    FRESH = "Fresh"
    REPEAT = "Repeat"
    QUEUE = "Queue"


class BatchStatus(str, Enum):
    """Weekly batch lifecycle."""
    GENERATED = "Generated"
    DOWNLOADED = "Downloaded"
    ARCHIVED = "Archived"  # Superseded by a re-generation before download


class SuppressionType(str, Enum):
    """Suppression list match key."""
    ADDRESS = "address"
    PHONE = "phone"
    OWNER_NAME = "owner_name"


class ActorType(str, Enum):
    """Actor types for the tracking event log."""
    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"
    FEED = "FEED"


class SettingDataType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"


# =============================================================================
# ACCOUNT / CONFIGURATION MODELS
# =============================================================================

class AccountDB(Base):
    """Marketing client account. Owns the skip-trace wallet."""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)

    status = Column(SQLEnum(AccountStatus), default=AccountStatus.ONBOARDING, nullable=False)
    weekly_capacity = Column(Integer, nullable=False, default=100)

    # Wallet - mutated only by the settlement ledger
    skip_trace_wallet_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    skip_trace_rate = Column(Numeric(8, 4), nullable=True)  # Overrides system default skip_trace_cost

    # Recurring schedule
    cycle_day = Column(String(10), nullable=True)   # Monday, Tuesday, ...
    cycle_time = Column(String(5), nullable=True)   # HH:MM (UTC)
    first_batch_generated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    settings = relationship("AccountSettingsDB", back_populates="account", uselist=False, cascade="all, delete-orphan")
    trackings = relationship("TrackingDB", back_populates="account", cascade="all, delete-orphan")
    batches = relationship("WeeklyBatchDB", back_populates="account", cascade="all, delete-orphan")
    transactions = relationship("WalletTransactionDB", back_populates="account", cascade="all, delete-orphan")


class AccountSettingsDB(Base):
    """
    Buy-box and cadence settings for one account.
    Nullable cadence columns fall back to system defaults.
    """
    __tablename__ = "account_settings"

    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)

    # ==========================================================================
    # BUY BOX
    # ==========================================================================
    counties = Column(JSON, nullable=False, default=list)        # FIPS codes; empty = no restriction
    property_types = Column(JSON, nullable=False, default=list)  # empty = no restriction
    max_price = Column(Float, nullable=True)                     # NULL = no ceiling
    min_equity = Column(Float, nullable=False, default=0.0)      # Percentage 0-100
    excluded_zips = Column(Text, nullable=False, default="")     # "60621, 60636"

    # ==========================================================================
    # CADENCE
    # ==========================================================================
    blitz_days_between = Column(Integer, nullable=True)
    blitz_max_touches = Column(Integer, nullable=True)
    chase_days_between = Column(Integer, nullable=True)
    chase_max_touches = Column(Integer, nullable=True)
    nurture_days_between = Column(Integer, nullable=True)
    nurture_max_touches = Column(Integer, nullable=True)
    cooldown_duration_months = Column(Integer, nullable=True)
    score_floor = Column(Float, nullable=True)  # In allocation points

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    account = relationship("AccountDB", back_populates="settings")


class SystemDefaultDB(Base):
    """System-wide configuration values (admin editable)."""
    __tablename__ = "system_defaults"

    id = Column(String(36), primary_key=True)  # UUID
    setting_key = Column(String(100), unique=True, nullable=False, index=True)
    setting_value = Column(String(255), nullable=False)
    data_type = Column(SQLEnum(SettingDataType), nullable=False, default=SettingDataType.NUMBER)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DistressSignalDB(Base):
    """Signal catalog row. Configuration only - never created per request."""
    __tablename__ = "distress_signals"

    id = Column(String(36), primary_key=True)  # UUID
    signal_key = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    base_conversion_rate = Column(Float, nullable=False)
    default_lane = Column(SQLEnum(Lane), nullable=False, default=Lane.NURTURE)
    is_time_sensitive = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# PROPERTY UNIVERSE (owned by upstream ingestion, read-only to the engine)
# =============================================================================

class OwnerContactDB(Base):
    """Owning contact of one or more properties. Deduplication key."""
    __tablename__ = "owner_contacts"

    id = Column(String(36), primary_key=True)  # UUID
    full_name = Column(String(255), nullable=False)
    owner_type = Column(String(20), default="Individual")  # Individual, Trust, LLC

    mailing_address_line1 = Column(String(255), nullable=True)
    mailing_city = Column(String(100), nullable=True)
    mailing_state = Column(String(2), nullable=True)
    mailing_postal_code = Column(String(10), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    properties = relationship("PropertyDB", back_populates="owner")


class PropertyDB(Base):
    """Physical asset with its currently detected distress signals."""
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True)  # UUID
    owner_id = Column(String(36), ForeignKey("owner_contacts.id", ondelete="SET NULL"), nullable=True, index=True)

    # Location
    fips = Column(String(5), nullable=False, index=True)  # County jurisdiction code
    address_line1 = Column(String(255), nullable=False)
    address_city = Column(String(100), nullable=True)
    address_state = Column(String(2), nullable=True)
    address_postal_code = Column(String(10), nullable=True)

    # Classification
    property_type = Column(String(50), nullable=True)
    estimated_value = Column(Float, nullable=False, default=0.0)
    equity_percent = Column(Float, nullable=False, default=0.0)

    # Currently detected signal keys, e.g. ["foreclosure", "vacant"]
    signal_keys = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("OwnerContactDB", back_populates="properties")


# =============================================================================
# TRACKING / CADENCE MODELS
# =============================================================================

class TrackingDB(Base):
    """
    Account-specific marketing lifecycle of one property.
    Created lazily on first eligibility, never deleted - only status-transitioned.
    """
    __tablename__ = "record_tracking"
    __table_args__ = (
        UniqueConstraint("account_id", "property_id", name="uq_tracking_account_property"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)

    lane = Column(SQLEnum(Lane), nullable=False, default=Lane.NURTURE)
    status = Column(SQLEnum(TrackingStatus), nullable=False, default=TrackingStatus.ACTIVE)
    status_reason = Column(String(255), nullable=True)  # Set by external status feeds

    # Scoring
    base_score = Column(Float, nullable=False, default=0.0)
    effective_score = Column(Float, nullable=False, default=0.0)
    final_allocation_points = Column(Float, nullable=False, default=0.0)
    matched_signals = Column(JSON, nullable=False, default=list)

    # Cadence
    touch_count = Column(Integer, nullable=False, default=0)
    last_touch_at = Column(DateTime, nullable=True)
    next_eligible_at = Column(DateTime, nullable=True)
    cooldown_start_at = Column(DateTime, nullable=True)
    cooldown_end_at = Column(DateTime, nullable=True)
    skip_traced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("AccountDB", back_populates="trackings")
    property = relationship("PropertyDB")
    events = relationship("TrackingEventDB", back_populates="tracking", cascade="all, delete-orphan")


class TrackingEventDB(Base):
    """
    Immutable log of tracking status transitions.
    Append-only - records every state change.
    """
    __tablename__ = "tracking_events"

    id = Column(String(36), primary_key=True)  # UUID
    tracking_id = Column(String(36), ForeignKey("record_tracking.id", ondelete="CASCADE"), nullable=False, index=True)

    from_status = Column(SQLEnum(TrackingStatus), nullable=True)  # NULL for creation
    to_status = Column(SQLEnum(TrackingStatus), nullable=False)
    trigger = Column(String(100), nullable=False)
    actor = Column(SQLEnum(ActorType), nullable=False)

    # Renamed from 'metadata' which is reserved in SQLAlchemy
    event_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    tracking = relationship("TrackingDB", back_populates="events")


# =============================================================================
# BATCH MODELS
# =============================================================================

class WeeklyBatchDB(Base):
    """Weekly selection snapshot. Membership is persisted in batch_records."""
    __tablename__ = "weekly_batches"

    id = Column(String(36), primary_key=True)  # UUID
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_code = Column(String(64), unique=True, nullable=False)  # {account}-{year}-W{week}-{suffix}

    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)

    total_records = Column(Integer, default=0)
    fresh_count = Column(Integer, default=0)
    repeat_count = Column(Integer, default=0)
    queue_count = Column(Integer, default=0)
    blitz_count = Column(Integer, default=0)
    chase_count = Column(Integer, default=0)
    nurture_count = Column(Integer, default=0)
    duplicate_contacts_avoided = Column(Integer, default=0)

    skip_trace_count = Column(Integer, default=0)
    skip_trace_cost = Column(Numeric(12, 2), default=Decimal("0.00"))

    status = Column(SQLEnum(BatchStatus), nullable=False, default=BatchStatus.GENERATED)
    generated_at = Column(DateTime, nullable=False, default=utcnow)
    first_download_at = Column(DateTime, nullable=True)
    download_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("AccountDB", back_populates="batches")
    records = relationship(
        "BatchRecordDB",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchRecordDB.rank",
    )


class BatchRecordDB(Base):
    """Explicit batch membership, captured at generation time."""
    __tablename__ = "batch_records"

    id = Column(String(36), primary_key=True)  # UUID
    batch_id = Column(String(36), ForeignKey("weekly_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    tracking_id = Column(String(36), ForeignKey("record_tracking.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(String(36), nullable=False)

    rank = Column(Integer, nullable=False)  # 1-based position in the export
    source_type = Column(SQLEnum(SourceType), nullable=False)
    lane = Column(SQLEnum(Lane), nullable=False)
    final_allocation_points = Column(Float, nullable=False)
    touch_count_at_allocation = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    batch = relationship("WeeklyBatchDB", back_populates="records")
    tracking = relationship("TrackingDB")


# =============================================================================
# WALLET / SKIP TRACE MODELS
# =============================================================================

class WalletTransactionDB(Base):
    """
    Append-only wallet ledger.
    Signed amount: negative for enrichment debits, positive for loads.
    """
    __tablename__ = "wallet_transactions"

    id = Column(String(36), primary_key=True)  # UUID
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(String(36), ForeignKey("weekly_batches.id", ondelete="SET NULL"), nullable=True)

    protocol_event = Column(String(100), nullable=False)  # SKIP TRACE BATCH ENRICHMENT, WALLET LOAD, ...
    settlement_amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime, default=utcnow)

    account = relationship("AccountDB", back_populates="transactions")


class SkipTraceDB(Base):
    """Contact data returned by a skip-trace provider for one record."""
    __tablename__ = "skip_traces"

    id = Column(String(36), primary_key=True)  # UUID
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    tracking_id = Column(String(36), ForeignKey("record_tracking.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(String(36), ForeignKey("weekly_batches.id", ondelete="SET NULL"), nullable=True)
    owner_id = Column(String(36), nullable=True)

    phone1 = Column(String(20), nullable=True)
    phone1_type = Column(String(20), nullable=True)
    phone2 = Column(String(20), nullable=True)
    phone2_type = Column(String(20), nullable=True)
    email1 = Column(String(255), nullable=True)

    provider = Column(String(50), nullable=False)
    cost = Column(Numeric(8, 4), nullable=False)

    created_at = Column(DateTime, default=utcnow)
