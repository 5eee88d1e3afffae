"""
Account Configuration Resolver

Merges per-account buy-box and cadence settings with system defaults
into a validated, immutable AccountConfig. Validation happens here so
that every cycle rejects bad configuration before touching state.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    AccountDB, AccountSettingsDB, SystemDefaultDB, AccountStatus, Lane, SettingDataType,
)
from ...models.allocation_models import (
    AccountConfig, BuyBox, CadencePolicy, LaneCadence,
)
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# SYSTEM DEFAULTS
# =============================================================================

SYSTEM_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "blitz_days_between": {
        "value": "14",
        "data_type": SettingDataType.NUMBER,
        "description": "Days between touches in Blitz lane",
    },
    "blitz_max_touches": {
        "value": "12",
        "data_type": SettingDataType.NUMBER,
        "description": "Maximum touches allowed in Blitz lane",
    },
    "chase_days_between": {
        "value": "30",
        "data_type": SettingDataType.NUMBER,
        "description": "Days between touches in Chase lane",
    },
    "chase_max_touches": {
        "value": "18",
        "data_type": SettingDataType.NUMBER,
        "description": "Maximum touches allowed in Chase lane",
    },
    "nurture_days_between": {
        "value": "45",
        "data_type": SettingDataType.NUMBER,
        "description": "Days between touches in Nurture lane",
    },
    "nurture_max_touches": {
        "value": "10",
        "data_type": SettingDataType.NUMBER,
        "description": "Maximum touches allowed in Nurture lane",
    },
    "cooldown_duration_months": {
        "value": "6",
        "data_type": SettingDataType.NUMBER,
        "description": "Duration of Cooldown period in months",
    },
    "score_floor": {
        "value": "0.10",
        "data_type": SettingDataType.NUMBER,
        "description": "Minimum allocation points required to stay Active",
    },
    "skip_trace_cost": {
        "value": "0.06",
        "data_type": SettingDataType.NUMBER,
        "description": "Cost per skip trace execution",
    },
}

LANE_SETTING_PREFIX = {
    Lane.BLITZ: "blitz",
    Lane.CHASE: "chase",
    Lane.NURTURE: "nurture",
}

# Whole, strictly positive counts; every other numeric setting only
# needs to be finite and non-negative
INTEGER_SETTINGS = frozenset(
    [f"{prefix}_days_between" for prefix in LANE_SETTING_PREFIX.values()]
    + [f"{prefix}_max_touches" for prefix in LANE_SETTING_PREFIX.values()]
    + ["cooldown_duration_months"]
)


def parse_setting(setting_key: str, raw: Any) -> Decimal:
    """Parse a numeric setting and apply the rules for its key."""
    try:
        number = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"{setting_key} must be numeric, got {raw!r}")
    if not number.is_finite():
        raise ValidationError(f"{setting_key} must be a finite number, got {raw!r}")

    if setting_key in INTEGER_SETTINGS:
        if number != number.to_integral_value():
            raise ValidationError(f"{setting_key} must be a whole number, got {raw!r}")
        if number <= 0:
            raise ValidationError(f"{setting_key} must be positive, got {number}")
    elif number < 0:
        raise ValidationError(f"{setting_key} must not be negative, got {number}")
    return number


def seed_system_defaults(db: Session) -> int:
    """Insert any missing system defaults. Existing values are left alone."""
    existing = {row.setting_key for row in db.query(SystemDefaultDB).all()}
    created = 0
    for key, entry in SYSTEM_DEFAULTS.items():
        if key in existing:
            continue
        db.add(SystemDefaultDB(
            id=str(uuid4()),
            setting_key=key,
            setting_value=entry["value"],
            data_type=entry["data_type"],
            description=entry["description"],
        ))
        created += 1
    db.flush()
    return created


def load_system_defaults(db: Session) -> Dict[str, str]:
    """Raw default values, persisted rows taking precedence over built-ins."""
    values = {key: entry["value"] for key, entry in SYSTEM_DEFAULTS.items()}
    for row in db.query(SystemDefaultDB).all():
        values[row.setting_key] = row.setting_value
    return values


def update_system_default(db: Session, setting_key: str, value: str) -> SystemDefaultDB:
    """
    Admin edit of a system default. Numeric values go through the same
    rules every cycle applies, so an accepted edit cannot break cycles.
    """
    row = db.query(SystemDefaultDB).filter(SystemDefaultDB.setting_key == setting_key).first()
    if row is None:
        raise NotFound("system default", setting_key)

    if row.data_type == SettingDataType.NUMBER:
        parse_setting(setting_key, value)

    try:
        row.setting_value = str(value)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"System default {setting_key} set to {value}")
    return row


# =============================================================================
# ACCOUNT LOOKUP
# =============================================================================

def get_account(db: Session, account_id: str, for_update: bool = False) -> AccountDB:
    """Fetch an account or raise NotFound."""
    if not account_id:
        raise ValidationError("account_id is required")

    query = db.query(AccountDB).filter(AccountDB.id == account_id)
    if for_update:
        query = query.with_for_update()
    account = query.first()
    if account is None:
        raise NotFound("account", account_id)
    return account


def _pick(override: Optional[Any], default: Any) -> Any:
    return default if override is None else override


# =============================================================================
# RESOLUTION
# =============================================================================

def build_buy_box(settings: Optional[AccountSettingsDB]) -> BuyBox:
    """Buy-box from settings; a missing settings row means no restriction."""
    if settings is None:
        return BuyBox()

    buy_box = BuyBox(
        counties=tuple(settings.counties or ()),
        property_types=tuple(settings.property_types or ()),
        max_price=settings.max_price,
        min_equity=settings.min_equity or 0.0,
        excluded_zips=settings.excluded_zips or "",
    )
    validate_buy_box(buy_box)
    return buy_box


def validate_buy_box(buy_box: BuyBox) -> None:
    """Reject thresholds that cannot describe a real buy-box."""
    if buy_box.max_price is not None and buy_box.max_price < 0:
        raise ValidationError(f"max_price must not be negative, got {buy_box.max_price}")
    if not 0 <= buy_box.min_equity <= 100:
        raise ValidationError(f"min_equity must be between 0 and 100, got {buy_box.min_equity}")


def build_cadence(settings: Optional[AccountSettingsDB], defaults: Dict[str, str]) -> CadencePolicy:
    """Per-lane cadence, account overrides first."""
    lanes = {}
    for lane, prefix in LANE_SETTING_PREFIX.items():
        days_key = f"{prefix}_days_between"
        touches_key = f"{prefix}_max_touches"
        days = int(parse_setting(days_key, _pick(getattr(settings, days_key, None), defaults[days_key])))
        touches = int(parse_setting(touches_key, _pick(getattr(settings, touches_key, None), defaults[touches_key])))
        lanes[lane] = LaneCadence(days_between=days, max_touches=touches)

    months = int(parse_setting(
        "cooldown_duration_months",
        _pick(getattr(settings, "cooldown_duration_months", None), defaults["cooldown_duration_months"]),
    ))
    floor = float(parse_setting("score_floor", _pick(getattr(settings, "score_floor", None), defaults["score_floor"])))

    return CadencePolicy(lanes=lanes, cooldown_duration_months=months, score_floor=floor)


def resolve_skip_trace_rate(account: AccountDB, defaults: Dict[str, str]) -> Decimal:
    raw = account.skip_trace_rate if account.skip_trace_rate is not None else defaults["skip_trace_cost"]
    return parse_setting("skip_trace_cost", raw)


def resolve_account_config(db: Session, account: AccountDB) -> AccountConfig:
    """
    Build the validated configuration for one account.

    Raises ValidationError for inactive accounts, non-positive capacity
    or malformed buy-box/cadence settings.
    """
    status = account.status or AccountStatus.ONBOARDING
    if not status.can_run_cycles:
        raise ValidationError(f"Account {account.id} is {status.value}; cycles are disabled")
    if account.weekly_capacity is None or account.weekly_capacity <= 0:
        raise ValidationError(f"weekly_capacity must be positive, got {account.weekly_capacity}")

    defaults = load_system_defaults(db)
    settings = account.settings

    return AccountConfig(
        account_id=account.id,
        weekly_capacity=account.weekly_capacity,
        buy_box=build_buy_box(settings),
        cadence=build_cadence(settings, defaults),
        skip_trace_rate=resolve_skip_trace_rate(account, defaults),
    )
