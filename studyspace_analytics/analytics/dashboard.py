"""
Segment Dashboard Module

Classifies a branch's whole customer population as of one day and rolls
the result up per segment for the CRM dashboard:
- Count, average lifetime spend and revisit rate per visit/ticket segment
- Revisit KPIs for new vs established customers
- Operation queues (at-risk, returned, new sign-ups)
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

import polars as pl
import structlog

from studyspace_analytics.analytics.models import (
    SEGMENT_ORDER,
    TICKET_SEGMENT_ORDER,
    CustomerFact,
    PurchaseFact,
    TicketType,
    VisitFact,
    VisitSegment,
    Window,
)
from studyspace_analytics.analytics.segments import (
    build_segment_features,
    classify_customers,
    classify_ticket_segment,
    favorite_ticket_type,
)
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import SegmentationSettings

if TYPE_CHECKING:
    from studyspace_analytics.database.store import DataStore

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class SegmentRollup:
    """Aggregates of one segment"""
    segment: str
    label: str
    count: int
    average_lifetime_spend: float
    average_revisit_rate: float  # % of members with revisit_min_visits+ visit days


@dataclass(frozen=True)
class QueueItem:
    """Customer entry in an operation queue"""
    customer_id: str
    segment: VisitSegment
    first_visit_date: date
    last_visit_date: Optional[date]
    recent_visit_count: int
    lifetime_spend: float
    favorite_ticket_type: Optional[TicketType] = None


@dataclass
class OperationQueues:
    at_risk: List[QueueItem] = field(default_factory=list)  # Oldest last visit first
    returned: List[QueueItem] = field(default_factory=list)  # Most recent visit first
    new_signups: List[QueueItem] = field(default_factory=list)  # Newest first


@dataclass
class DashboardSummary:
    """Dashboard rollups of one population as of one day"""
    reference_date: date
    window: Window
    total_customers: int = 0
    visit_segments: List[SegmentRollup] = field(default_factory=list)
    ticket_segments: List[SegmentRollup] = field(default_factory=list)
    new_revisit_rate: float = 0.0
    established_revisit_rate: float = 0.0
    queues: OperationQueues = field(default_factory=OperationQueues)
    customer_segments: Dict[str, VisitSegment] = field(default_factory=dict)

    def rollup(self, segment: VisitSegment) -> SegmentRollup:
        return next(r for r in self.visit_segments if r.segment == segment.value)


ROLLUP_SCHEMA = {
    "customer_id": pl.Utf8,
    "visit_segment": pl.Utf8,
    "ticket_segment": pl.Utf8,
    "lifetime_spend": pl.Float64,
    "recent_visit_count": pl.Int64,
    "is_new": pl.Boolean,
}


class DashboardAggregator:
    """
    Per-segment rollups for a customer population.

    Example:
        aggregator = DashboardAggregator()
        summary = aggregator.aggregate(customers, visits, purchases, date(2024, 6, 30))
        for rollup in summary.visit_segments:
            print(rollup.segment, rollup.count, rollup.average_revisit_rate)
    """

    def __init__(self, config: Optional[SegmentationSettings] = None):
        self.config = config or settings.segmentation

    def window_for(self, reference_date: date) -> Window:
        """Last window_days days ending at reference_date"""
        return Window(
            start=reference_date - timedelta(days=self.config.window_days - 1),
            end=reference_date,
        )

    def _rollups(self, df: pl.DataFrame, column: str, order: Sequence[Enum]) -> List[SegmentRollup]:
        grouped = (
            df.group_by(column)
            .agg([
                pl.len().alias("count"),
                pl.col("lifetime_spend").mean().alias("average_lifetime_spend"),
                (
                    (pl.col("recent_visit_count") >= self.config.revisit_min_visits)
                    .cast(pl.Float64)
                    .mean() * 100
                ).alias("average_revisit_rate"),
            ])
        )
        by_segment = {row[column]: row for row in grouped.iter_rows(named=True)}

        rollups = []
        for segment in order:
            row = by_segment.get(segment.value)
            rollups.append(SegmentRollup(
                segment=segment.value,
                label=segment.label,
                count=int(row["count"]) if row else 0,
                average_lifetime_spend=float(row["average_lifetime_spend"]) if row else 0.0,
                average_revisit_rate=round(float(row["average_revisit_rate"]), 1) if row else 0.0,
            ))
        return rollups

    def _revisit_rate(self, df: pl.DataFrame) -> float:
        if df.is_empty():
            return 0.0
        revisits = df.filter(pl.col("recent_visit_count") >= self.config.revisit_min_visits).height
        return round(revisits / df.height * 100, 1)

    def aggregate(
        self,
        customers: Iterable[CustomerFact],
        visits: Iterable[VisitFact],
        purchases: Iterable[PurchaseFact],
        reference_date: date,
    ) -> DashboardSummary:
        """
        Classify every customer once and roll up per segment.

        Customers whose first visit is after reference_date are not part of
        the population. Lifetime spend counts purchases on or before
        reference_date.

        Args:
            customers: Population to classify
            visits: Visit facts (all history up to reference_date)
            purchases: Purchase facts (all history up to reference_date)
            reference_date: Day the dashboard is computed for

        Returns:
            DashboardSummary
        """
        window = self.window_for(reference_date)
        population = [c for c in customers if c.first_visit_date <= reference_date]
        features = build_segment_features(visits, as_of=reference_date, range_start=window.start)
        segments = classify_customers(
            population, features, reference_date, window.start, config=self.config
        )

        spend: Dict[str, float] = {}
        bought: Dict[str, List[PurchaseFact]] = {}
        for p in purchases:
            if p.purchase_date <= reference_date:
                spend[p.customer_id] = spend.get(p.customer_id, 0.0) + p.amount
                bought.setdefault(p.customer_id, []).append(p)

        rows = []
        for c in population:
            feat = features.get(c.customer_id)
            ticket_segment = classify_ticket_segment(
                feat.has_remaining_fixed_seat if feat else False,
                feat.has_remaining_term_ticket if feat else False,
                feat.has_remaining_time_package if feat else False,
            )
            rows.append({
                "customer_id": c.customer_id,
                "visit_segment": segments[c.customer_id].value,
                "ticket_segment": ticket_segment.value,
                "lifetime_spend": spend.get(c.customer_id, 0.0),
                "recent_visit_count": feat.recent_visit_count if feat else 0,
                "is_new": window.contains(c.first_visit_date),
            })
        df = pl.DataFrame(rows, schema=ROLLUP_SCHEMA)

        def queue_item(c: CustomerFact) -> QueueItem:
            feat = features.get(c.customer_id)
            return QueueItem(
                customer_id=c.customer_id,
                segment=segments[c.customer_id],
                first_visit_date=c.first_visit_date,
                last_visit_date=feat.last_visit if feat else None,
                recent_visit_count=feat.recent_visit_count if feat else 0,
                lifetime_spend=spend.get(c.customer_id, 0.0),
                favorite_ticket_type=favorite_ticket_type(bought.get(c.customer_id, [])),
            )

        def members(segment: VisitSegment) -> List[QueueItem]:
            return [queue_item(c) for c in population if segments[c.customer_id] == segment]

        queues = OperationQueues(
            at_risk=sorted(
                members(VisitSegment.AT_RISK_14),
                key=lambda q: (q.last_visit_date or date.min, q.customer_id),
            ),
            returned=sorted(
                members(VisitSegment.RETURNED),
                key=lambda q: (-(q.last_visit_date or date.min).toordinal(), q.customer_id),
            ),
            new_signups=sorted(
                members(VisitSegment.NEW_0_7),
                key=lambda q: (-q.first_visit_date.toordinal(), q.customer_id),
            ),
        )

        summary = DashboardSummary(
            reference_date=reference_date,
            window=window,
            total_customers=len(population),
            visit_segments=self._rollups(df, "visit_segment", SEGMENT_ORDER),
            ticket_segments=self._rollups(df, "ticket_segment", TICKET_SEGMENT_ORDER),
            new_revisit_rate=self._revisit_rate(df.filter(pl.col("is_new"))),
            established_revisit_rate=self._revisit_rate(df.filter(~pl.col("is_new"))),
            queues=queues,
            customer_segments=segments,
        )

        logger.info(
            "Dashboard aggregated",
            reference_date=reference_date.isoformat(),
            customers=summary.total_customers,
            at_risk=len(queues.at_risk),
            returned=len(queues.returned),
            new_signups=len(queues.new_signups),
        )
        return summary

    def aggregate_branch(
        self,
        store: "DataStore",
        branch_id: str,
        reference_date: date,
    ) -> DashboardSummary:
        """Fetch one branch's facts in bulk and aggregate them"""
        customers = store.fetch_customers(branch_id)
        if not customers:
            return self.aggregate([], [], [], reference_date)

        history_start = min(c.first_visit_date for c in customers)
        visits = store.fetch_visits(branch_id, history_start, reference_date)
        purchases = store.fetch_purchases(branch_id, history_start, reference_date)
        return self.aggregate(customers, visits, purchases, reference_date)
