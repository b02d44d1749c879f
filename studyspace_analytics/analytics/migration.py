"""
Segment Migration Module

Tracks how a branch's segment distribution shifts across a before/after
window around a marketing intervention:
- Per-segment before/after counts and percentage change
- Legal (from, to) transitions with positive/negative polarity
- Dropped transitions that the adjacency table does not allow
"""

from collections import Counter
from datetime import date, timedelta
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional, Tuple

import structlog

from studyspace_analytics.analytics.models import (
    NEGATIVE_SEGMENTS,
    SEGMENT_ORDER,
    CustomerFact,
    SegmentChange,
    SegmentMigration,
    SegmentMigrationReport,
    VisitFact,
    VisitSegment,
    Window,
)
from studyspace_analytics.analytics.segments import (
    build_segment_features,
    classify_customers,
    segment_counts,
    visits_frame,
)
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import MigrationSettings, SegmentationSettings
from studyspace_analytics.quality.validators import validate_window

if TYPE_CHECKING:
    from studyspace_analytics.database.store import DataStore

logger = structlog.get_logger(__name__)
settings = get_settings()


_ENGAGED = (VisitSegment.VISIT_UNDER10, VisitSegment.VISIT_10_20, VisitSegment.VISIT_OVER20)

# Destinations reachable from each segment between two classifications.
# "returned" is only reachable from a lapsed state; "new_0_7" is never a destination.
ALLOWED_TRANSITIONS: Dict[VisitSegment, FrozenSet[VisitSegment]] = {
    VisitSegment.NEW_0_7: frozenset(_ENGAGED + (VisitSegment.AT_RISK_14, VisitSegment.CHURNED)),
    VisitSegment.RETURNED: frozenset(_ENGAGED + (VisitSegment.AT_RISK_14, VisitSegment.CHURNED)),
    VisitSegment.VISIT_UNDER10: frozenset(
        (VisitSegment.VISIT_10_20, VisitSegment.VISIT_OVER20, VisitSegment.AT_RISK_14, VisitSegment.CHURNED)
    ),
    VisitSegment.VISIT_10_20: frozenset(
        (VisitSegment.VISIT_UNDER10, VisitSegment.VISIT_OVER20, VisitSegment.AT_RISK_14, VisitSegment.CHURNED)
    ),
    VisitSegment.VISIT_OVER20: frozenset(
        (VisitSegment.VISIT_UNDER10, VisitSegment.VISIT_10_20, VisitSegment.AT_RISK_14, VisitSegment.CHURNED)
    ),
    VisitSegment.AT_RISK_14: frozenset(_ENGAGED + (VisitSegment.CHURNED, VisitSegment.RETURNED)),
    VisitSegment.CHURNED: frozenset(_ENGAGED + (VisitSegment.AT_RISK_14, VisitSegment.RETURNED)),
}

_HIGH_ENGAGEMENT = frozenset({VisitSegment.VISIT_OVER20, VisitSegment.VISIT_10_20})
_DOWNGRADES = frozenset({VisitSegment.VISIT_UNDER10, VisitSegment.AT_RISK_14, VisitSegment.CHURNED})


def is_allowed_transition(from_segment: VisitSegment, to_segment: VisitSegment) -> bool:
    return to_segment in ALLOWED_TRANSITIONS.get(from_segment, frozenset())


def is_positive_migration(from_segment: VisitSegment, to_segment: VisitSegment) -> bool:
    """
    Polarity of a segment move, first matching rule wins:

    1. Into a high-engagement segment is positive.
    2. Out of a lapsed segment into a healthy one is positive.
    3. Into a lapsed segment is negative.
    4. Into "returned" is positive.
    5. From high engagement down is negative.
    6. Otherwise, moving up SEGMENT_ORDER is positive.
    """
    if to_segment in _HIGH_ENGAGEMENT:
        return True
    if from_segment in NEGATIVE_SEGMENTS and to_segment not in NEGATIVE_SEGMENTS:
        return True
    if to_segment in NEGATIVE_SEGMENTS:
        return False
    if to_segment == VisitSegment.RETURNED:
        return True
    if from_segment in _HIGH_ENGAGEMENT and to_segment in _DOWNGRADES:
        return False
    return SEGMENT_ORDER.index(to_segment) < SEGMENT_ORDER.index(from_segment)


def change_percent(before: int, after: int) -> float:
    """Percentage change rounded to one decimal"""
    if before == 0:
        return 100.0 if after > 0 else 0.0
    return round((after - before) / before * 100, 1)


def migration_windows(
    event_start: date,
    event_end: date,
    config: Optional[MigrationSettings] = None,
) -> Tuple[Window, Window]:
    """Before window ends the day before the event; after window starts on its last day"""
    cfg = config or settings.migration
    before = Window(
        start=event_start - timedelta(days=cfg.before_window_days),
        end=event_start - timedelta(days=1),
    )
    after = Window(
        start=event_end,
        end=event_end + timedelta(days=cfg.after_window_days),
    )
    return before, after


class SegmentMigrationTracker:
    """
    Before/after segment migration around an intervention.

    Each customer is classified as of the last day of each window using only
    visits on or before that day, so the result is independent of the live
    last-visit value and of input order.

    Example:
        tracker = SegmentMigrationTracker()
        report = tracker.track(customers, visits, date(2024, 3, 1), date(2024, 3, 31))
        for m in report.migrations:
            print(m.from_segment, m.to_segment, m.count)
    """

    def __init__(
        self,
        config: Optional[MigrationSettings] = None,
        segmentation: Optional[SegmentationSettings] = None,
    ):
        self.config = config or settings.migration
        self.segmentation = segmentation or settings.segmentation

    def _classify_at(self, customers, visits_df, window: Window) -> Dict[str, VisitSegment]:
        features = build_segment_features(visits_df, as_of=window.end, range_start=window.start)
        return classify_customers(
            customers,
            features,
            reference_date=window.end,
            range_start=window.start,
            config=self.segmentation,
        )

    def track(
        self,
        customers: Iterable[CustomerFact],
        visits: Iterable[VisitFact],
        event_start: date,
        event_end: date,
    ) -> SegmentMigrationReport:
        """
        Build the migration report for one population.

        Args:
            customers: Population to classify
            visits: Visit facts covering at least both windows
            event_start: First day of the intervention
            event_end: Last day of the intervention

        Returns:
            SegmentMigrationReport

        Raises:
            InvalidWindowError: If event_end < event_start
        """
        validate_window(event_start, event_end, name="event window")
        before, after = migration_windows(event_start, event_end, self.config)

        customers = list(customers)
        visits_df = visits_frame(visits)

        before_segments = self._classify_at(customers, visits_df, before)
        after_segments = self._classify_at(customers, visits_df, after)

        counts_before = segment_counts(before_segments)
        counts_after = segment_counts(after_segments)

        segment_changes = [
            SegmentChange(
                segment=segment,
                count_before=counts_before[segment],
                count_after=counts_after[segment],
                change=counts_after[segment] - counts_before[segment],
                change_percent=change_percent(counts_before[segment], counts_after[segment]),
                is_negative_segment=segment.is_negative,
            )
            for segment in SEGMENT_ORDER
        ]

        pairs: Counter = Counter()
        for customer_id, from_segment in before_segments.items():
            to_segment = after_segments.get(customer_id)
            if to_segment is not None and to_segment != from_segment:
                pairs[(from_segment, to_segment)] += 1

        migrations: List[SegmentMigration] = []
        dropped = 0
        for (from_segment, to_segment), count in pairs.items():
            if not is_allowed_transition(from_segment, to_segment):
                dropped += count
                logger.debug(
                    "Transition not allowed, dropped",
                    from_segment=from_segment.value,
                    to_segment=to_segment.value,
                    count=count,
                )
                continue
            migrations.append(SegmentMigration(
                from_segment=from_segment,
                to_segment=to_segment,
                count=count,
                is_positive=is_positive_migration(from_segment, to_segment),
            ))

        migrations.sort(key=lambda m: (
            -m.count,
            SEGMENT_ORDER.index(m.from_segment),
            SEGMENT_ORDER.index(m.to_segment),
        ))

        report = SegmentMigrationReport(
            before_window=before,
            after_window=after,
            segment_changes=segment_changes,
            migrations=migrations,
            customers_before=len(before_segments),
            customers_after=len(after_segments),
            dropped_transitions=dropped,
        )

        if dropped:
            logger.warning("Illegal segment transitions dropped", count=dropped)

        logger.info(
            "Segment migration tracked",
            event_start=event_start.isoformat(),
            event_end=event_end.isoformat(),
            customers_before=report.customers_before,
            customers_after=report.customers_after,
            migrations=len(migrations),
        )
        return report

    def track_branch(
        self,
        store: "DataStore",
        branch_id: str,
        event_start: date,
        event_end: date,
    ) -> SegmentMigrationReport:
        """
        Fetch one branch's facts in bulk and track its migration.

        The population is every customer with a visit between the start of
        the before window and the end of the after window. Visits are fetched
        from the earliest first visit so previous-last-visit lookups are exact.
        """
        validate_window(event_start, event_end, name="event window")
        before, after = migration_windows(event_start, event_end, self.config)

        all_customers = store.fetch_customers(branch_id)
        if not all_customers:
            return self.track([], [], event_start, event_end)

        history_start = min(c.first_visit_date for c in all_customers)
        visits = store.fetch_visits(branch_id, min(history_start, before.start), after.end)

        active_ids = {v.customer_id for v in visits if before.start <= v.visit_date <= after.end}
        customers = [c for c in all_customers if c.customer_id in active_ids]

        logger.debug(
            "Branch population loaded",
            branch_id=branch_id,
            customers=len(customers),
            visits=len(visits),
        )
        return self.track(customers, visits, event_start, event_end)
