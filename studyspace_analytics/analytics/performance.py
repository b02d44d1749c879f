"""
Event Performance Module

Turns the raw outputs of an event analysis into judgements:
- Actual vs forecast revenue bands
- Ticket upgrades made during the event
- Component score (0-100) with reasons and a verdict
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from studyspace_analytics.analytics.models import (
    NEGATIVE_SEGMENTS,
    EffectSizeLabel,
    ForecastResult,
    PurchaseFact,
    SegmentMigration,
    SignificanceResult,
    TicketType,
    VisitSegment,
)
from studyspace_analytics.analytics.segments import infer_ticket_type
from studyspace_analytics.quality.validators import validate_window

logger = structlog.get_logger(__name__)


class ForecastBand(str, Enum):
    """Actual revenue relative to the forecast"""
    FAR_ABOVE = "FAR_ABOVE"  # >= +15%
    ABOVE = "ABOVE"  # >= +5%
    IN_LINE = "IN_LINE"  # >= -5%
    BELOW = "BELOW"  # >= -15%
    FAR_BELOW = "FAR_BELOW"
    NO_FORECAST = "NO_FORECAST"


class Verdict(str, Enum):
    """Coarse grade of an event score"""
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    NEUTRAL = "NEUTRAL"
    POOR = "POOR"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ForecastComparison:
    """Actual revenue measured against expected revenue"""
    vs_expected_percent: float
    vs_expected_amount: float
    band: ForecastBand


@dataclass(frozen=True)
class TicketUpgrade:
    """Customers that moved to a higher ticket class during an event"""
    from_type: TicketType
    to_type: TicketType
    count: int
    upgrade_rate: float  # % of event buyers whose previous ticket was from_type


@dataclass(frozen=True)
class ScoreComponent:
    name: str
    score: float
    reason: str


@dataclass
class EventScore:
    """Total score of one branch's event outcome"""
    score: float
    verdict: Verdict
    components: List[ScoreComponent] = field(default_factory=list)

    @property
    def breakdown(self) -> Dict[str, float]:
        return {c.name: c.score for c in self.components}


# =============================================================================
# FORECAST COMPARISON
# =============================================================================

def performance_vs_forecast(actual_revenue: float, forecast: ForecastResult) -> ForecastComparison:
    """
    Compare actual event revenue with the forecast.

    A zero forecast cannot be compared: vs_expected is 100 when there was
    any revenue, else 0, and the band is NO_FORECAST.
    """
    expected = forecast.expected_revenue
    if expected == 0:
        return ForecastComparison(
            vs_expected_percent=100.0 if actual_revenue > 0 else 0.0,
            vs_expected_amount=actual_revenue,
            band=ForecastBand.NO_FORECAST,
        )

    pct = (actual_revenue - expected) / expected * 100
    if pct >= 15:
        band = ForecastBand.FAR_ABOVE
    elif pct >= 5:
        band = ForecastBand.ABOVE
    elif pct >= -5:
        band = ForecastBand.IN_LINE
    elif pct >= -15:
        band = ForecastBand.BELOW
    else:
        band = ForecastBand.FAR_BELOW

    return ForecastComparison(
        vs_expected_percent=pct,
        vs_expected_amount=actual_revenue - expected,
        band=band,
    )


# =============================================================================
# TICKET UPGRADES
# =============================================================================

def track_ticket_upgrades(
    purchases: Iterable[PurchaseFact],
    event_start: date,
    event_end: date,
) -> List[TicketUpgrade]:
    """
    Count customers whose first purchase in the event is a higher ticket
    class than their latest purchase before it.

    Args:
        purchases: Branch purchases covering the event and the time before it
        event_start: First day of the event
        event_end: Last day of the event

    Returns:
        Upgrades sorted by count descending

    Raises:
        InvalidWindowError: If event_end < event_start
    """
    validate_window(event_start, event_end, name="event window")

    ordered = sorted(purchases, key=lambda p: (p.purchase_date, p.customer_id))
    previous: Dict[str, PurchaseFact] = {}
    first_in_event: Dict[str, PurchaseFact] = {}

    for p in ordered:
        if p.purchase_date < event_start:
            previous[p.customer_id] = p  # Latest wins
        elif p.purchase_date <= event_end and p.customer_id not in first_in_event:
            first_in_event[p.customer_id] = p

    from_totals: Counter = Counter()
    upgrades: Counter = Counter()
    for customer_id, current in first_in_event.items():
        prior = previous.get(customer_id)
        if prior is None:
            continue
        prev_type = infer_ticket_type(prior.ticket_name)
        curr_type = infer_ticket_type(current.ticket_name)
        from_totals[prev_type] += 1
        if curr_type.rank > prev_type.rank:
            upgrades[(prev_type, curr_type)] += 1

    result = [
        TicketUpgrade(
            from_type=from_type,
            to_type=to_type,
            count=count,
            upgrade_rate=round(count / from_totals[from_type] * 100, 1),
        )
        for (from_type, to_type), count in upgrades.items()
    ]
    result.sort(key=lambda u: (-u.count, u.from_type.rank, u.to_type.rank))

    logger.debug(
        "Ticket upgrades tracked",
        event_buyers=len(first_in_event),
        upgrades=sum(u.count for u in result),
    )
    return result


# =============================================================================
# SCORING
# =============================================================================

_HIGH_ENGAGEMENT = (VisitSegment.VISIT_OVER20, VisitSegment.VISIT_10_20)
_ENGAGED = (VisitSegment.VISIT_OVER20, VisitSegment.VISIT_10_20, VisitSegment.VISIT_UNDER10)


def _revenue_component(revenue_growth: float, control_growth: Optional[float]) -> ScoreComponent:
    net = revenue_growth - control_growth if control_growth is not None else revenue_growth
    basis = "net of control" if control_growth is not None else "revenue"

    if net > 20:
        score, reason = 30, f"{basis} growth {net:.1f}% (over 20%)"
    elif net > 10:
        score, reason = 20, f"{basis} growth {net:.1f}% (10-20%)"
    elif net > 5:
        score, reason = 15, f"{basis} growth {net:.1f}% (5-10%)"
    elif net > 0:
        score, reason = 10, f"{basis} growth {net:.1f}% (0-5%)"
    elif net < -10:
        score, reason = -20, f"{basis} fell {net:.1f}% (over 10%)"
    elif net < 0:
        score, reason = -10, f"{basis} fell {net:.1f}%"
    else:
        score, reason = 0, "No revenue change"
    return ScoreComponent("revenue", score, reason)


def _visits_component(visits_growth: float) -> ScoreComponent:
    if visits_growth > 15:
        score = 15
    elif visits_growth > 5:
        score = 10
    elif visits_growth > 0:
        score = 5
    elif visits_growth < -10:
        score = -10
    else:
        score = 0
    return ScoreComponent("visits", score, f"Visits changed {visits_growth:.1f}%")


def _statistical_component(
    significance: Optional[SignificanceResult],
    net_growth: float,
) -> ScoreComponent:
    if significance is None:
        return ScoreComponent("statistical", 0, "No comparison samples")

    score = 0
    if significance.is_significant and net_growth > 0:
        score, reason = 15, "Statistically significant positive change"
    elif significance.is_significant and net_growth < 0:
        score, reason = -5, "Statistically significant negative change"
    else:
        reason = "Not significant (within natural variation)"

    if significance.effect_size_label == EffectSizeLabel.LARGE:
        score += 5
        reason += ", large effect"
    elif significance.effect_size_label == EffectSizeLabel.MEDIUM:
        score += 3
        reason += ", medium effect"
    return ScoreComponent("statistical", score, reason)


def _customer_component(new_customers: int, returned_customers: int) -> ScoreComponent:
    score = 0
    if new_customers > 20:
        score += 10
    elif new_customers > 10:
        score += 5
    if returned_customers > 10:
        score += 5
    elif returned_customers > 5:
        score += 3
    return ScoreComponent(
        "customers", score, f"{new_customers} new, {returned_customers} returned customers"
    )


def _segment_component(migrations: Sequence[SegmentMigration]) -> ScoreComponent:
    weighted = 0.0
    for m in migrations:
        if m.to_segment in _HIGH_ENGAGEMENT:
            weighted += m.count * 0.5
        if m.to_segment in NEGATIVE_SEGMENTS:
            weighted -= m.count * 0.5
        if m.from_segment in NEGATIVE_SEGMENTS and m.to_segment in _ENGAGED:
            weighted += m.count * 0.7

    positive = sum(m.count for m in migrations if m.is_positive)
    negative = sum(m.count for m in migrations if not m.is_positive)

    if weighted > 15:
        score, reason = 10, f"{positive} positive moves (engagement up, lapses down)"
    elif weighted > 8:
        score, reason = 7, f"{positive} positive moves"
    elif weighted > 3:
        score, reason = 4, "Slightly positive moves"
    elif weighted < -10:
        score, reason = -10, f"{negative} negative moves (lapses up)"
    elif weighted < -5:
        score, reason = -5, f"{negative} negative moves"
    else:
        score, reason = 0, "Little segment movement"
    return ScoreComponent("segments", score, reason)


def _upgrade_component(upgrades: Sequence[TicketUpgrade]) -> ScoreComponent:
    total = sum(u.count for u in upgrades)
    if total > 30:
        score = 10
    elif total > 15:
        score = 5
    else:
        score = 0
    return ScoreComponent("upgrades", score, f"{total} ticket upgrades")


def verdict_for(score: float) -> Verdict:
    if score >= 70:
        return Verdict.EXCELLENT
    if score >= 50:
        return Verdict.GOOD
    if score >= 30:
        return Verdict.NEUTRAL
    if score >= 10:
        return Verdict.POOR
    return Verdict.FAILED


def score_event(
    revenue_growth: float,
    visits_growth: float,
    significance: Optional[SignificanceResult],
    new_customers: int,
    returned_customers: int,
    migrations: Sequence[SegmentMigration] = (),
    upgrades: Sequence[TicketUpgrade] = (),
    control_growth: Optional[float] = None,
) -> EventScore:
    """
    Score an event outcome from its measured effects.

    There is no base score: the total is the sum of the component scores,
    clamped to [0, 100].

    Args:
        revenue_growth: Revenue growth % vs the comparison window or forecast
        visits_growth: Visit-count growth % vs the comparison window
        significance: Significance of the daily-revenue change, if testable
        new_customers: Customers whose first visit fell in the event
        returned_customers: Event visitors who had lapsed before it
        migrations: Segment migrations around the event
        upgrades: Ticket upgrades during the event
        control_growth: Revenue growth of an untreated control branch

    Returns:
        EventScore with per-component reasons and a verdict
    """
    net_growth = revenue_growth - control_growth if control_growth is not None else revenue_growth
    components = [
        _revenue_component(revenue_growth, control_growth),
        _visits_component(visits_growth),
        _statistical_component(significance, net_growth),
        _customer_component(new_customers, returned_customers),
        _segment_component(migrations),
        _upgrade_component(upgrades),
    ]

    raw = sum(c.score for c in components)
    total = max(0.0, min(100.0, float(raw)))
    return EventScore(score=total, verdict=verdict_for(total), components=components)
