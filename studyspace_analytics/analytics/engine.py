"""
Event Impact Engine

Orchestrates a full marketing-event analysis across branches. For each
branch it fetches facts in bulk, then computes in memory:

1. Comparison window (YOY when a year of history exists, else MOM)
2. Revenue and visit growth, Welch's t-test and Cohen's d
3. Forecast-based growth when there is no comparison revenue
4. Segment migration, ticket upgrades, new and returned customers
5. Score and verdict

Branches are independent and analysed in parallel.
"""

import calendar
import concurrent.futures
from dataclasses import dataclass, field
from datetime import date, timedelta
from functools import partial
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set

import structlog

from studyspace_analytics.analytics.forecast import (
    RevenueForecaster,
    TicketTypeForecast,
    forecast_by_ticket_type,
)
from studyspace_analytics.analytics.migration import SegmentMigrationTracker
from studyspace_analytics.analytics.models import (
    ComparisonType,
    CustomerFact,
    DailyRevenue,
    ForecastResult,
    SegmentMigrationReport,
    SignificanceResult,
    VisitFact,
    Window,
)
from studyspace_analytics.analytics.performance import (
    EventScore,
    ForecastComparison,
    TicketUpgrade,
    performance_vs_forecast,
    score_event,
    track_ticket_upgrades,
)
from studyspace_analytics.analytics.statistics import StatisticalTester, growth_rate
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import AnalysisSettings
from studyspace_analytics.quality.validators import validate_window

if TYPE_CHECKING:
    from studyspace_analytics.database.store import DataStore

logger = structlog.get_logger(__name__)
settings = get_settings()


def shift_months(day: date, months: int) -> date:
    """Move a date by whole months, clamping to the target month's last day"""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def comparison_window(event: Window, comparison_type: ComparisonType) -> Window:
    """Same calendar dates one year (YOY) or one month (MOM) earlier"""
    months = -12 if comparison_type == ComparisonType.YOY else -1
    return Window(start=shift_months(event.start, months), end=shift_months(event.end, months))


@dataclass
class BranchImpact:
    """Outcome of one event at one branch"""
    branch_id: str
    event_window: Window
    comparison_type: ComparisonType
    comparison_window: Window
    has_yoy_data: bool
    revenue_before: float
    revenue_after: float
    revenue_growth: float
    visits_before: int
    visits_after: int
    visits_growth: float
    new_customers: int
    returned_customers: int
    significance: SignificanceResult
    migration: SegmentMigrationReport
    ticket_upgrades: List[TicketUpgrade]
    score: EventScore
    used_forecast: bool = False
    forecast: Optional[ForecastResult] = None
    forecast_comparison: Optional[ForecastComparison] = None
    ticket_forecast: Optional[TicketTypeForecast] = None
    control_growth: Optional[float] = None
    control_branch_id: Optional[str] = None
    notes: List[str] = field(default_factory=list)


@dataclass
class EventImpactSummary:
    """Outcome of one event across all of its branches"""
    event_start: date
    event_end: date
    branches: List[BranchImpact] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        if not self.branches:
            return 0.0
        return sum(b.score.score for b in self.branches) / len(self.branches)

    @property
    def by_branch(self) -> Dict[str, BranchImpact]:
        return {b.branch_id: b for b in self.branches}


class EventImpactAnalyzer:
    """
    Event impact analysis over an injected DataStore.

    Example:
        analyzer = EventImpactAnalyzer(store)
        summary = analyzer.analyze_event(["gangnam", "sinchon"], date(2024, 7, 1), date(2024, 7, 14))
        for impact in summary.branches:
            print(impact.branch_id, impact.score.verdict)
    """

    def __init__(
        self,
        store: "DataStore",
        config: Optional[AnalysisSettings] = None,
        forecaster: Optional[RevenueForecaster] = None,
        tracker: Optional[SegmentMigrationTracker] = None,
        tester: Optional[StatisticalTester] = None,
    ):
        self.store = store
        self.config = config or settings.analysis
        self.forecaster = forecaster or RevenueForecaster()
        self.tracker = tracker or SegmentMigrationTracker()
        self.tester = tester or StatisticalTester()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _revenue_in(rows: Sequence[DailyRevenue], window: Window) -> List[float]:
        return [r.total_revenue for r in rows if window.contains(r.revenue_date)]

    def _customer_counts(
        self,
        customers: Sequence[CustomerFact],
        visits: Sequence[VisitFact],
        event: Window,
    ) -> Dict[str, int]:
        """New and returned customers among event visitors"""
        first_visits = {c.customer_id: c.first_visit_date for c in customers}
        event_visitors: Set[str] = {v.customer_id for v in visits if event.contains(v.visit_date)}

        last_before: Dict[str, date] = {}
        for v in visits:
            if v.visit_date < event.start:
                current = last_before.get(v.customer_id)
                if current is None or v.visit_date > current:
                    last_before[v.customer_id] = v.visit_date

        gap_cutoff = event.start - timedelta(days=self.config.returning_gap_days)
        new = sum(
            1 for cid in event_visitors
            if cid in first_visits and event.contains(first_visits[cid])
        )
        returned = sum(
            1 for cid in event_visitors
            if cid in last_before and last_before[cid] < gap_cutoff
        )
        return {"new": new, "returned": returned}

    def _control_growth(
        self,
        control_branch_ids: Sequence[str],
        event: Window,
        comparison: Window,
    ):
        """Revenue growth of the first control branch with data in both windows"""
        for control_id in control_branch_ids:
            rows = self.store.fetch_daily_revenue(control_id, end=event.end)
            after = self._revenue_in(rows, event)
            before = self._revenue_in(rows, comparison)
            if after and before and sum(before) > 0:
                return control_id, growth_rate(sum(before), sum(after))
        return None, None

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze_branch(
        self,
        branch_id: str,
        event_start: date,
        event_end: date,
        external_factor_types: Sequence[str] = (),
        comparison_type: Optional[ComparisonType] = None,
        control_branch_ids: Sequence[str] = (),
    ) -> BranchImpact:
        """
        Analyse one branch's response to an event.

        Raises:
            InvalidWindowError: If event_end < event_start
        """
        validate_window(event_start, event_end, name="event window")
        event = Window(start=event_start, end=event_end)
        log = logger.bind(branch_id=branch_id, event_start=event_start.isoformat())
        notes: List[str] = []

        revenue = self.store.fetch_daily_revenue(branch_id, end=event_end)
        oldest = revenue[0].revenue_date if revenue else None
        has_yoy = oldest is not None and oldest <= event_start - timedelta(days=self.config.yoy_lookback_days)
        chosen = comparison_type or (ComparisonType.YOY if has_yoy else ComparisonType.MOM)
        comparison = comparison_window(event, chosen)

        event_revenues = self._revenue_in(revenue, event)
        comparison_revenues = self._revenue_in(revenue, comparison)
        revenue_after = sum(event_revenues)
        revenue_before = sum(comparison_revenues)

        forecast = None
        vs_forecast = None
        ticket_forecast = None
        used_forecast = False

        customers = self.store.fetch_customers(branch_id)
        history_start = min([c.first_visit_date for c in customers] + [comparison.start])
        purchases = self.store.fetch_purchases(branch_id, history_start, event_end)

        if comparison_revenues and revenue_before > 0:
            revenue_growth = growth_rate(revenue_before, revenue_after)
        else:
            used_forecast = True
            factor_types = list(external_factor_types) or self._overlapping_factor_types(branch_id, event)
            forecast = self.forecaster.forecast_branch(
                self.store, branch_id, event_start, event_end, factor_types
            )
            if forecast.expected_revenue > 0:
                vs_forecast = performance_vs_forecast(revenue_after, forecast)
                revenue_growth = vs_forecast.vs_expected_percent
                revenue_before = forecast.expected_revenue
                ticket_forecast = forecast_by_ticket_type(forecast.expected_revenue, purchases, event_start)
                notes.append(f"No comparison revenue, measured against forecast ({forecast.confidence.value})")
                if forecast.source_branch_id:
                    notes.append(f"Forecast borrowed from similar branch {forecast.source_branch_id}")
            else:
                revenue_growth = 0.0
                notes.append(f"No {chosen.value} comparison data and no forecast available")
            log.info("Comparison data missing, used forecast", expected=forecast.expected_revenue)

        visits = self.store.fetch_visits(branch_id, history_start, event_end)
        visits_after = sum(1 for v in visits if event.contains(v.visit_date))
        visits_before = sum(1 for v in visits if comparison.contains(v.visit_date))
        visits_growth = growth_rate(visits_before, visits_after)

        counts = self._customer_counts(customers, visits, event)

        significance = self.tester.compare(comparison_revenues, event_revenues)
        migration = self.tracker.track_branch(self.store, branch_id, event_start, event_end)
        upgrades = track_ticket_upgrades(purchases, event_start, event_end)

        control_id, control_growth = (None, None)
        if control_branch_ids and (not has_yoy or used_forecast):
            control_id, control_growth = self._control_growth(control_branch_ids, event, comparison)
            if control_id is not None:
                notes.append(f"Control branch {control_id} grew {control_growth:.1f}%")

        score = score_event(
            revenue_growth=revenue_growth,
            visits_growth=visits_growth,
            significance=significance,
            new_customers=counts["new"],
            returned_customers=counts["returned"],
            migrations=migration.migrations,
            upgrades=upgrades,
            control_growth=control_growth,
        )

        log.info(
            "Branch impact analysed",
            comparison_type=chosen.value,
            revenue_growth=revenue_growth,
            score=score.score,
            verdict=score.verdict.value,
        )

        return BranchImpact(
            branch_id=branch_id,
            event_window=event,
            comparison_type=chosen,
            comparison_window=comparison,
            has_yoy_data=has_yoy,
            revenue_before=revenue_before,
            revenue_after=revenue_after,
            revenue_growth=revenue_growth,
            visits_before=visits_before,
            visits_after=visits_after,
            visits_growth=visits_growth,
            new_customers=counts["new"],
            returned_customers=counts["returned"],
            significance=significance,
            migration=migration,
            ticket_upgrades=upgrades,
            score=score,
            used_forecast=used_forecast,
            forecast=forecast,
            forecast_comparison=vs_forecast,
            ticket_forecast=ticket_forecast,
            control_growth=control_growth,
            control_branch_id=control_id,
            notes=notes,
        )

    def _overlapping_factor_types(self, branch_id: str, event: Window) -> List[str]:
        """Factor types with an occurrence overlapping the event"""
        occurrences = self.store.fetch_external_factors(branch_id)
        return sorted({
            o.factor_type for o in occurrences
            if o.start_date <= event.end and o.end_date >= event.start
        })

    def analyze_event(
        self,
        branch_ids: Sequence[str],
        event_start: date,
        event_end: date,
        external_factor_types: Sequence[str] = (),
        comparison_type: Optional[ComparisonType] = None,
        control_branch_ids: Sequence[str] = (),
    ) -> EventImpactSummary:
        """
        Analyse an event across branches in parallel.

        Errors raised by the DataStore for any branch propagate unchanged.

        Args:
            branch_ids: Branches the event ran at
            event_start: First day of the event
            event_end: Last day of the event
            external_factor_types: Factor types active during the event
            comparison_type: Force YOY or MOM instead of choosing per branch
            control_branch_ids: Untreated branches used as a control group

        Returns:
            EventImpactSummary with one BranchImpact per branch, in input order

        Raises:
            InvalidWindowError: If event_end < event_start
        """
        validate_window(event_start, event_end, name="event window")
        controls = [c for c in control_branch_ids if c not in set(branch_ids)]

        analyze = partial(
            self.analyze_branch,
            event_start=event_start,
            event_end=event_end,
            external_factor_types=external_factor_types,
            comparison_type=comparison_type,
            control_branch_ids=controls,
        )

        logger.info(
            "Analysing event",
            branches=len(branch_ids),
            event_start=event_start.isoformat(),
            event_end=event_end.isoformat(),
        )

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            impacts = list(pool.map(analyze, branch_ids))

        summary = EventImpactSummary(event_start=event_start, event_end=event_end, branches=impacts)
        logger.info(
            "Event analysis complete",
            branches=len(impacts),
            average_score=summary.average_score,
        )
        return summary
