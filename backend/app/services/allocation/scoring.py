"""
Scoring Function

Turns a property's matched signals plus a tracking entity's touch history
into a priority score and lane. Pure functions: re-run every cycle, never
cached across cycles, since signal sets change as distress events are
detected or resolved.

    base_score              = sum(weight of each matched signal)
    effective_score         = base_score * 0.5 ** touch_count
    final_allocation_points = effective_score * 100
"""
from typing import Iterable, List, Optional

from ...models.db_models import Lane
from ...models.allocation_models import SignalScore
from .signal_catalog import SignalCatalog

TOUCH_DECAY = 0.5
POINTS_PER_SCORE = 100


def resolve_lane(lanes: Iterable[Lane]) -> Lane:
    """Highest-priority lane wins; no lanes means Nurture."""
    best: Optional[Lane] = None
    for lane in lanes:
        if best is None or lane.precedence < best.precedence:
            best = lane
    return best or Lane.NURTURE


def score_signals(signal_keys: Iterable[str], catalog: SignalCatalog) -> SignalScore:
    """
    Sum matched weights and pick the lane.

    Unknown or inactive keys contribute nothing. A key listed twice is
    counted once.
    """
    matched: List[str] = []
    base_score = 0.0
    lanes = []
    for key in signal_keys or ():
        if key in matched:
            continue
        entry = catalog.get_active(key)
        if entry is None:
            continue
        matched.append(key)
        base_score += entry.base_conversion_rate
        lanes.append(entry.default_lane)

    return SignalScore(base_score=base_score, lane=resolve_lane(lanes), matched_keys=tuple(matched))


def effective_score(base_score: float, touch_count: int) -> float:
    if touch_count < 0:
        raise ValueError(f"touch_count must not be negative, got {touch_count}")
    return base_score * TOUCH_DECAY ** touch_count


def allocation_points(score: float) -> float:
    return score * POINTS_PER_SCORE


def apply_score(tracking, signal_score: SignalScore) -> bool:
    """
    Write base/effective/points/lane onto a tracking entity using its
    current touch_count. Returns True when any value changed.
    """
    effective = effective_score(signal_score.base_score, tracking.touch_count or 0)
    points = allocation_points(effective)
    matched = list(signal_score.matched_keys)

    changed = (
        tracking.base_score != signal_score.base_score
        or tracking.effective_score != effective
        or tracking.final_allocation_points != points
        or tracking.lane != signal_score.lane
        or (tracking.matched_signals or []) != matched
    )

    tracking.base_score = signal_score.base_score
    tracking.effective_score = effective
    tracking.final_allocation_points = points
    tracking.lane = signal_score.lane
    tracking.matched_signals = matched
    return changed


def redecay(tracking) -> None:
    """Recompute effective score and points after a touch-count change."""
    tracking.effective_score = effective_score(tracking.base_score or 0.0, tracking.touch_count or 0)
    tracking.final_allocation_points = allocation_points(tracking.effective_score)
