"""
Customer Segmentation Module

Classifies customers into lifecycle/engagement segments from their visit
history and into ticket segments from the access rights they hold.

Includes:
- Ordered visit-segment rule table (first match wins)
- Ticket segment priority (fixed > term > time > day)
- Ticket-type inference from ticket names
- Batch per-customer feature derivation with polars
"""

import re
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from studyspace_analytics.analytics.models import (
    CustomerFact,
    PurchaseFact,
    TicketSegment,
    TicketType,
    VisitFact,
    VisitSegment,
)
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import SegmentationSettings

logger = structlog.get_logger(__name__)
settings = get_settings()


VISIT_SCHEMA = {
    "customer_id": pl.Utf8,
    "visit_date": pl.Date,
    "has_remaining_term_ticket": pl.Boolean,
    "has_remaining_time_package": pl.Boolean,
    "has_remaining_fixed_seat": pl.Boolean,
}


# =============================================================================
# VISIT SEGMENT RULES
# =============================================================================

@dataclass(frozen=True)
class SegmentContext:
    """Everything a visit-segment rule may look at for one customer"""
    first_visit_date: date
    last_visit_date: Optional[date]
    recent_visit_count: int
    reference_date: date
    range_start: date
    previous_last_visit: Optional[date]
    is_holder: bool  # Fixed seat or active term ticket

    @property
    def days_since_last_visit(self) -> Optional[int]:
        if self.last_visit_date is None:
            return None
        return (self.reference_date - self.last_visit_date).days


@dataclass(frozen=True)
class SegmentRule:
    """One row of the visit-segment decision table"""
    name: str
    segment: VisitSegment
    applies: Callable[[SegmentContext, SegmentationSettings], bool]


def _holder_without_visits(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    return ctx.is_holder and ctx.recent_visit_count == 0


def _churned(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    if ctx.is_holder:
        return False
    days = ctx.days_since_last_visit
    return days is None or days > cfg.churn_after_days


def _at_risk(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    if ctx.is_holder:
        return False
    days = ctx.days_since_last_visit
    return days is not None and cfg.at_risk_after_days <= days <= cfg.churn_after_days


def _returned(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    if ctx.previous_last_visit is None or ctx.recent_visit_count < 1:
        return False
    return (ctx.range_start - ctx.previous_last_visit).days > cfg.dormant_after_days


def _new(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    return ctx.range_start <= ctx.first_visit_date <= ctx.reference_date


def _vip(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    return ctx.recent_visit_count >= cfg.vip_min_visits


def _regular(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    return ctx.recent_visit_count >= cfg.regular_min_visits


def _always(ctx: SegmentContext, cfg: SegmentationSettings) -> bool:
    return True


VISIT_SEGMENT_RULES: Tuple[SegmentRule, ...] = (
    SegmentRule("holder_without_visits", VisitSegment.VISIT_UNDER10, _holder_without_visits),
    SegmentRule("churned", VisitSegment.CHURNED, _churned),
    SegmentRule("at_risk", VisitSegment.AT_RISK_14, _at_risk),
    SegmentRule("returned", VisitSegment.RETURNED, _returned),
    SegmentRule("new", VisitSegment.NEW_0_7, _new),
    SegmentRule("vip", VisitSegment.VISIT_OVER20, _vip),
    SegmentRule("regular", VisitSegment.VISIT_10_20, _regular),
    SegmentRule("general", VisitSegment.VISIT_UNDER10, _always),
)


def classify_visit_segment(
    customer: CustomerFact,
    recent_visit_count: int,
    reference_date: date,
    range_start: date,
    previous_last_visit: Optional[date],
    has_remaining_fixed_seat: bool,
    has_remaining_term_ticket: bool = False,
    rules: Optional[Sequence[SegmentRule]] = None,
    config: Optional[SegmentationSettings] = None,
) -> VisitSegment:
    """
    Assign exactly one visit segment to a customer.

    ``customer.last_visit_date`` must already reflect only visits at or
    before ``reference_date``.

    Example:
        segment = classify_visit_segment(
            customer, recent_visit_count=12,
            reference_date=date(2024, 3, 31), range_start=date(2024, 3, 2),
            previous_last_visit=date(2024, 2, 28), has_remaining_fixed_seat=False,
        )

    Args:
        customer: Customer summary with first and last visit dates
        recent_visit_count: Distinct visit days in [range_start, reference_date]
        reference_date: Day the classification is made for
        range_start: First day of the lookback window
        previous_last_visit: Last visit strictly before range_start, or None
        has_remaining_fixed_seat: Customer holds a fixed seat
        has_remaining_term_ticket: Customer holds an active term ticket
        rules: Override decision table (defaults to VISIT_SEGMENT_RULES)
        config: Override thresholds (defaults to application settings)

    Returns:
        The first matching segment
    """
    cfg = config or settings.segmentation
    ctx = SegmentContext(
        first_visit_date=customer.first_visit_date,
        last_visit_date=customer.last_visit_date,
        recent_visit_count=recent_visit_count,
        reference_date=reference_date,
        range_start=range_start,
        previous_last_visit=previous_last_visit,
        is_holder=has_remaining_fixed_seat or has_remaining_term_ticket,
    )

    for rule in rules or VISIT_SEGMENT_RULES:
        if rule.applies(ctx, cfg):
            return rule.segment

    # Default table ends with a catch-all; custom tables may not
    return VisitSegment.VISIT_UNDER10


def classify_ticket_segment(
    has_fixed: bool,
    has_term: bool,
    has_time_package: bool,
) -> TicketSegment:
    """Ticket segment by priority: fixed > term > time > day"""
    if has_fixed:
        return TicketSegment.FIXED_TICKET
    if has_term:
        return TicketSegment.TERM_TICKET
    if has_time_package:
        return TicketSegment.TIME_TICKET
    return TicketSegment.DAY_TICKET


# =============================================================================
# TICKET TYPE INFERENCE
# =============================================================================

FIXED_KEYWORDS = ("고정", "fixed")
TERM_KEYWORDS = ("기간", "정기", "주간", "월간", "4주", "2주", "term", "weekly", "monthly")
PACKAGE_KEYWORDS = ("패키지", "package")
DAY_KEYWORDS = ("당일", "일일", "1day", "1일", "day pass")
HOURS_PATTERN = re.compile(r"(\d+)\s*(?:시간|hours?|h\b)", re.IGNORECASE)
MAX_DAY_TICKET_HOURS = 12


def infer_ticket_type(ticket_name: str) -> TicketType:
    """
    Infer the ticket class from a ticket's display name.

    Fixed-seat and term keywords win first; packages are time tickets;
    an "N hours" ticket of at most 12 hours is a day ticket.

    Example:
        infer_ticket_type("4시간권")       # TicketType.DAY
        infer_ticket_type("50시간 패키지")  # TicketType.TIME
        infer_ticket_type("4주 정기권")     # TicketType.TERM
    """
    lower = (ticket_name or "").lower()

    if any(k in lower for k in FIXED_KEYWORDS):
        return TicketType.FIXED
    if any(k in lower for k in TERM_KEYWORDS):
        return TicketType.TERM
    if any(k in lower for k in PACKAGE_KEYWORDS):
        return TicketType.TIME

    match = HOURS_PATTERN.search(lower)
    if match:
        if int(match.group(1)) <= MAX_DAY_TICKET_HOURS:
            return TicketType.DAY
        return TicketType.TIME

    if any(k in lower for k in DAY_KEYWORDS):
        return TicketType.DAY

    return TicketType.TIME


def favorite_ticket_type(purchases: Iterable[PurchaseFact]) -> Optional[TicketType]:
    """Most frequently bought ticket type among paid purchases, or None"""
    counts = Counter(
        infer_ticket_type(p.ticket_name) for p in purchases if p.amount > 0
    )
    if not counts:
        return None

    # Ties resolved by upgrade order, lowest class first
    return max(counts, key=lambda t: (counts[t], -t.rank))


# =============================================================================
# BATCH FEATURES
# =============================================================================

@dataclass(frozen=True)
class SegmentFeatures:
    """Per-customer inputs to the classifier as of one day"""
    customer_id: str
    last_visit: Optional[date]
    recent_visit_count: int
    previous_last_visit: Optional[date]
    has_remaining_fixed_seat: bool = False
    has_remaining_term_ticket: bool = False
    has_remaining_time_package: bool = False


def visits_frame(visits: Iterable[VisitFact]) -> pl.DataFrame:
    """Build a typed polars frame from visit facts"""
    rows = [
        {
            "customer_id": v.customer_id,
            "visit_date": v.visit_date,
            "has_remaining_term_ticket": v.has_remaining_term_ticket,
            "has_remaining_time_package": v.has_remaining_time_package,
            "has_remaining_fixed_seat": v.has_remaining_fixed_seat,
        }
        for v in visits
    ]
    return pl.DataFrame(rows, schema=VISIT_SCHEMA)


def build_segment_features(
    visits,
    as_of: date,
    range_start: date,
) -> Dict[str, SegmentFeatures]:
    """
    Derive classifier inputs for every customer with a visit on or before as_of.

    Args:
        visits: Visit facts or an equivalent polars DataFrame
        as_of: Classification day; later visits are ignored
        range_start: First day of the lookback window

    Returns:
        Mapping of customer_id to SegmentFeatures
    """
    df = visits if isinstance(visits, pl.DataFrame) else visits_frame(visits)
    df = df.filter(pl.col("visit_date") <= as_of)

    if df.is_empty():
        return {}

    in_window = pl.col("visit_date") >= range_start
    before_window = pl.col("visit_date") < range_start

    features = df.group_by("customer_id").agg([
        pl.col("visit_date").max().alias("last_visit"),
        pl.col("visit_date").filter(in_window).n_unique().alias("recent_visit_count"),
        pl.col("visit_date").filter(before_window).max().alias("previous_last_visit"),
        # Resource flags as of the latest visit
        pl.col("has_remaining_fixed_seat").sort_by("visit_date").last().alias("fixed"),
        pl.col("has_remaining_term_ticket").sort_by("visit_date").last().alias("term"),
        pl.col("has_remaining_time_package").sort_by("visit_date").last().alias("time"),
    ])

    result = {
        row["customer_id"]: SegmentFeatures(
            customer_id=row["customer_id"],
            last_visit=row["last_visit"],
            recent_visit_count=int(row["recent_visit_count"] or 0),
            previous_last_visit=row["previous_last_visit"],
            has_remaining_fixed_seat=bool(row["fixed"]),
            has_remaining_term_ticket=bool(row["term"]),
            has_remaining_time_package=bool(row["time"]),
        )
        for row in features.iter_rows(named=True)
    }

    logger.debug(
        "Segment features built",
        customers=len(result),
        as_of=as_of.isoformat(),
        range_start=range_start.isoformat(),
    )
    return result


def classify_customers(
    customers: Iterable[CustomerFact],
    features: Dict[str, SegmentFeatures],
    reference_date: date,
    range_start: date,
    config: Optional[SegmentationSettings] = None,
) -> Dict[str, VisitSegment]:
    """
    Classify every customer that had visited by reference_date.

    Customers whose first visit falls after reference_date are skipped.
    Customers without any visit on or before reference_date are classified
    with no last visit.
    """
    segments: Dict[str, VisitSegment] = {}
    for customer in customers:
        if customer.first_visit_date > reference_date:
            continue

        feat = features.get(customer.customer_id)
        as_of_customer = CustomerFact(
            customer_id=customer.customer_id,
            first_visit_date=customer.first_visit_date,
            last_visit_date=feat.last_visit if feat else None,
        )
        segments[customer.customer_id] = classify_visit_segment(
            as_of_customer,
            recent_visit_count=feat.recent_visit_count if feat else 0,
            reference_date=reference_date,
            range_start=range_start,
            previous_last_visit=feat.previous_last_visit if feat else None,
            has_remaining_fixed_seat=feat.has_remaining_fixed_seat if feat else False,
            has_remaining_term_ticket=feat.has_remaining_term_ticket if feat else False,
            config=config,
        )
    return segments


def segment_counts(segments: Dict[str, VisitSegment]) -> Dict[VisitSegment, int]:
    """Tally customers per visit segment (every segment present, zero-filled)"""
    counts = Counter(segments.values())
    return {segment: counts.get(segment, 0) for segment in VisitSegment}


def customers_in_segment(
    segments: Dict[str, VisitSegment],
    segment: VisitSegment,
) -> List[str]:
    """Customer ids in one segment, sorted"""
    return sorted(cid for cid, seg in segments.items() if seg == segment)
