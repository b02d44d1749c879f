"""
Revenue Forecasting Module

Expected revenue of a future window absent any intervention:

    expected = base_daily x season_index x external_factor_index x trend x event_days

Includes:
- Base rate from the most recent daily observations
- Calendar-month season index
- External-factor index from past completed occurrences
- Year-over-year or recent-vs-prior trend
- Similar-branch fallback for sparse histories
- Ticket-type split of an expected total
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from studyspace_analytics.analytics.models import (
    BranchProfile,
    DailyRevenue,
    ExternalFactorOccurrence,
    ForecastBreakdown,
    ForecastConfidence,
    ForecastResult,
    ForecastSource,
    PurchaseFact,
    TicketType,
)
from studyspace_analytics.analytics.segments import infer_ticket_type
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import ForecastSettings
from studyspace_analytics.quality.validators import validate_window

if TYPE_CHECKING:
    from studyspace_analytics.database.store import DataStore

logger = structlog.get_logger(__name__)
settings = get_settings()


REVENUE_SCHEMA = {"revenue_date": pl.Date, "total_revenue": pl.Float64}


@dataclass(frozen=True)
class SimilarBranchHistory:
    """History borrowed from the most similar other branch"""
    profile: BranchProfile
    history: List[DailyRevenue]
    similarity_score: int = 0


class TicketMixSource(str, Enum):
    """Where ticket-type ratios came from"""
    HISTORICAL = "HISTORICAL"
    SIMILAR_BRANCH = "SIMILAR_BRANCH"
    DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class TicketTypeForecast:
    """Expected revenue split by ticket type"""
    amounts: Dict[TicketType, float]
    ratios: Dict[TicketType, float]
    data_source: TicketMixSource


def revenue_frame(history: Iterable[DailyRevenue]) -> pl.DataFrame:
    """Build a typed polars frame from daily revenue rows"""
    rows = [{"revenue_date": r.revenue_date, "total_revenue": float(r.total_revenue)} for r in history]
    return pl.DataFrame(rows, schema=REVENUE_SCHEMA).sort("revenue_date")


def _mean(df: pl.DataFrame) -> Optional[float]:
    if df.is_empty():
        return None
    return float(df["total_revenue"].mean())


def _pct(ratio: float) -> str:
    return f"{abs((ratio - 1) * 100):.1f}%"


def similarity_score(
    target: Optional[BranchProfile],
    candidate: BranchProfile,
    config: Optional[ForecastSettings] = None,
) -> int:
    """Weighted attribute match between two branches"""
    cfg = config or settings.forecast
    if target is None:
        return 0
    score = 0
    if target.region and candidate.region == target.region:
        score += cfg.region_weight
    if target.size and candidate.size == target.size:
        score += cfg.size_weight
    if target.target_audience and candidate.target_audience == target.target_audience:
        score += cfg.audience_weight
    return score


def select_similar_branch(
    target: Optional[BranchProfile],
    candidates: Sequence[Tuple[BranchProfile, int]],
    config: Optional[ForecastSettings] = None,
) -> Optional[Tuple[BranchProfile, int]]:
    """
    Pick the most similar candidate with enough history.

    Ranked by similarity score, then history length, then branch id.

    Returns:
        (profile, similarity score), or None when no candidate qualifies
    """
    cfg = config or settings.forecast
    eligible = [
        (profile, days) for profile, days in candidates
        if days >= cfg.similar_min_history_days
        and (target is None or profile.branch_id != target.branch_id)
    ]
    if not eligible:
        return None

    scored = [(similarity_score(target, profile, cfg), days, profile) for profile, days in eligible]
    scored.sort(key=lambda s: (-s[0], -s[1], s[2].branch_id))
    score, _, profile = scored[0]
    return profile, score


class RevenueForecaster:
    """
    Expected-revenue forecaster for a single branch.

    Only observations strictly before the event start are used, so a
    forecast never sees the window it predicts.

    Example:
        forecaster = RevenueForecaster()
        result = forecaster.forecast(history, date(2024, 7, 1), date(2024, 7, 7))
        print(result.expected_revenue, result.confidence)
    """

    def __init__(self, config: Optional[ForecastSettings] = None):
        self.config = config or settings.forecast

    # -------------------------------------------------------------------------
    # Factors
    # -------------------------------------------------------------------------

    def base_revenue(self, df: pl.DataFrame) -> float:
        """Mean of the most recent base_window_days observations"""
        return _mean(df.tail(self.config.base_window_days)) or 0.0

    def season_index(self, df: pl.DataFrame, target_month: int) -> Tuple[float, str]:
        """Target calendar month mean divided by the overall daily mean"""
        if df.is_empty():
            return 1.0, "No history, season index not applied"

        overall = _mean(df)
        monthly = (
            df.with_columns(pl.col("revenue_date").dt.month().alias("month"))
            .group_by("month")
            .agg([
                pl.col("total_revenue").mean().alias("avg"),
                pl.len().alias("days"),
            ])
            .filter(pl.col("month") == target_month)
        )

        if monthly.is_empty() or not overall:
            return 1.0, f"No data for month {target_month}, season index 1.0"

        row = monthly.row(0, named=True)
        index = row["avg"] / overall
        direction = "above" if index >= 1 else "below"
        return index, (
            f"Month {target_month} runs {_pct(index)} {direction} the overall average "
            f"({row['days']} days)"
        )

    def external_factor_index(
        self,
        df: pl.DataFrame,
        factor_types: Sequence[str],
        occurrences: Sequence[ExternalFactorOccurrence],
        event_start: date,
    ) -> Tuple[float, str]:
        """Average during/before revenue ratio over past completed occurrences"""
        if not factor_types:
            return 1.0, "No external factors"

        label = ", ".join(factor_types)
        ratios: List[float] = []

        for factor_type in factor_types:
            past = sorted(
                (o for o in occurrences if o.factor_type == factor_type and o.end_date < event_start),
                key=lambda o: o.end_date,
                reverse=True,
            )[: self.config.factor_occurrence_limit]

            for occurrence in past:
                during = _mean(df.filter(
                    pl.col("revenue_date").is_between(occurrence.start_date, occurrence.end_date)
                ))
                before = _mean(df.filter(
                    pl.col("revenue_date").is_between(
                        occurrence.start_date - timedelta(days=occurrence.duration_days),
                        occurrence.start_date - timedelta(days=1),
                    )
                ))
                if during is None or before is None or before <= 0:
                    continue
                ratios.append(during / before)

        if not ratios:
            return 1.0, f"No usable past {label} periods, external factor index 1.0"

        index = sum(ratios) / len(ratios)
        direction = "up" if index >= 1 else "down"
        return index, f"Past {label} periods averaged {_pct(index)} {direction} ({len(ratios)} occurrences)"

    def trend_coefficient(self, df: pl.DataFrame, event_start: date) -> Tuple[float, str]:
        """Same month this year vs last year, else recent block vs prior block"""
        month, year = event_start.month, event_start.year
        with_parts = df.with_columns([
            pl.col("revenue_date").dt.month().alias("month"),
            pl.col("revenue_date").dt.year().alias("year"),
        ])
        this_year = _mean(with_parts.filter((pl.col("month") == month) & (pl.col("year") == year)))
        last_year = _mean(with_parts.filter((pl.col("month") == month) & (pl.col("year") == year - 1)))

        if this_year is not None and last_year is not None:
            if last_year == 0:
                return 1.0, "No revenue in the same month last year, trend 1.0"
            coefficient = this_year / last_year
            direction = "growth" if coefficient >= 1 else "decline"
            return coefficient, f"{_pct(coefficient)} {direction} vs month {month} last year"

        window = self.config.trend_window_days
        recent_rows = df.tail(window * 2)
        if recent_rows.height < self.config.trend_min_days:
            return 1.0, "Not enough history for a trend, trend 1.0"

        recent = _mean(recent_rows.tail(window))
        prior = _mean(recent_rows.head(max(recent_rows.height - window, 0)))
        if prior is None:
            return 1.0, "No prior block to compare, trend 1.0"
        if prior == 0:
            return 1.0, "No revenue in the prior block, trend 1.0"

        coefficient = recent / prior
        direction = "growth" if coefficient >= 1 else "decline"
        return coefficient, f"{_pct(coefficient)} {direction} over the most recent {window} days"

    def confidence(self, history_days: int, distinct_months: int) -> Tuple[ForecastConfidence, int]:
        """Confidence and data months for a history"""
        cfg = self.config
        data_months = math.ceil(history_days / 30)
        if data_months >= cfg.high_confidence_months and distinct_months >= cfg.high_confidence_distinct_months:
            return ForecastConfidence.HIGH, data_months
        if data_months >= cfg.medium_confidence_months and distinct_months >= cfg.medium_confidence_distinct_months:
            return ForecastConfidence.MEDIUM, data_months
        return ForecastConfidence.LOW, data_months

    # -------------------------------------------------------------------------
    # Forecasts
    # -------------------------------------------------------------------------

    def forecast(
        self,
        history: Iterable[DailyRevenue],
        event_start: date,
        event_end: date,
        external_factor_types: Sequence[str] = (),
        factor_occurrences: Sequence[ExternalFactorOccurrence] = (),
        fallback: Optional[SimilarBranchHistory] = None,
    ) -> ForecastResult:
        """
        Forecast revenue for [event_start, event_end].

        Args:
            history: Daily revenue of the branch (any order, any range)
            event_start: First day of the forecast window
            event_end: Last day of the forecast window
            external_factor_types: Factor types active during the window
            factor_occurrences: Known occurrences of those factor types
            fallback: Similar branch used when the branch history is too short

        Returns:
            ForecastResult

        Raises:
            InvalidWindowError: If event_end < event_start
        """
        validate_window(event_start, event_end, name="forecast window")
        event_days = (event_end - event_start).days + 1

        df = revenue_frame(history).filter(pl.col("revenue_date") < event_start)
        history_days = df.height

        if history_days < self.config.min_history_days:
            return self._forecast_from_similar(fallback, event_start, event_days, history_days)

        base = self.base_revenue(df)
        recent_window = min(self.config.base_window_days, history_days)
        overall = _mean(df) or 0.0
        season, season_reason = self.season_index(df, event_start.month)
        external, external_reason = self.external_factor_index(
            df, external_factor_types, factor_occurrences, event_start
        )
        trend, trend_reason = self.trend_coefficient(df, event_start)

        distinct_months = df["revenue_date"].dt.month().n_unique()
        confidence, data_months = self.confidence(history_days, distinct_months)

        expected = base * season * external * trend * event_days

        overall_reason = (
            f"Overall average daily revenue {overall:,.0f} over {history_days} days"
            if overall else "No revenue in history"
        )

        result = ForecastResult(
            expected_revenue=expected,
            base_revenue=base,
            season_index=season,
            external_factor_index=external,
            trend_coefficient=trend,
            confidence=confidence,
            breakdown=ForecastBreakdown(
                base_revenue_reason=f"Average daily revenue {base:,.0f} over the last {recent_window} days",
                season_reason=season_reason,
                external_reason=external_reason,
                trend_reason=trend_reason,
                recent_average_reason=overall_reason,
            ),
            event_days=event_days,
            data_months=data_months,
            history_days=history_days,
            data_source=ForecastSource.BRANCH,
        )

        logger.info(
            "Revenue forecast computed",
            event_start=event_start.isoformat(),
            event_days=event_days,
            expected_revenue=expected,
            confidence=confidence.value,
            history_days=history_days,
        )
        return result

    def _forecast_from_similar(
        self,
        fallback: Optional[SimilarBranchHistory],
        event_start: date,
        event_days: int,
        history_days: int,
    ) -> ForecastResult:
        df = revenue_frame(fallback.history).filter(pl.col("revenue_date") < event_start) if fallback else None

        if df is None or df.is_empty():
            logger.warning(
                "No history and no similar branch, returning data-absent forecast",
                history_days=history_days,
            )
            return no_data_forecast(event_days, history_days)

        base = self.base_revenue(df)
        recent_days = min(self.config.base_window_days, df.height)
        season, season_reason = self.season_index(df, event_start.month)
        expected = base * season * event_days
        name = fallback.profile.name or fallback.profile.branch_id

        logger.info(
            "Forecast fell back to similar branch",
            source_branch_id=fallback.profile.branch_id,
            similarity_score=fallback.similarity_score,
            history_days=history_days,
            expected_revenue=expected,
        )

        return ForecastResult(
            expected_revenue=expected,
            base_revenue=base,
            season_index=season,
            external_factor_index=1.0,
            trend_coefficient=1.0,
            confidence=ForecastConfidence.LOW,
            breakdown=ForecastBreakdown(
                base_revenue_reason=f"Similar branch ({name}) average daily revenue {base:,.0f}",
                season_reason=f"Similar branch: {season_reason}",
                external_reason="External factors not applied for similar-branch forecast",
                trend_reason="Trend not applied for similar-branch forecast",
                recent_average_reason="Similar-branch basis",
            ),
            event_days=event_days,
            data_months=math.ceil(recent_days / 30),
            history_days=history_days,
            data_source=ForecastSource.SIMILAR_BRANCH,
            source_branch_id=fallback.profile.branch_id,
        )

    def forecast_branch(
        self,
        store: "DataStore",
        branch_id: str,
        event_start: date,
        event_end: date,
        external_factor_types: Sequence[str] = (),
    ) -> ForecastResult:
        """Fetch one branch's history in bulk and forecast its window"""
        validate_window(event_start, event_end, name="forecast window")
        cutoff = event_start - timedelta(days=1)

        history = store.fetch_daily_revenue(branch_id, end=cutoff)
        occurrences = (
            store.fetch_external_factors(branch_id, list(external_factor_types))
            if external_factor_types else []
        )

        fallback = None
        if len(history) < self.config.min_history_days:
            candidates = store.fetch_similar_candidates(branch_id, self.config.similar_min_history_days)
            chosen = select_similar_branch(store.fetch_branch(branch_id), candidates, self.config)
            if chosen is not None:
                profile, score = chosen
                fallback = SimilarBranchHistory(
                    profile=profile,
                    history=store.fetch_daily_revenue(profile.branch_id, end=cutoff),
                    similarity_score=score,
                )

        return self.forecast(
            history,
            event_start,
            event_end,
            external_factor_types=external_factor_types,
            factor_occurrences=occurrences,
            fallback=fallback,
        )


def no_data_forecast(event_days: int, history_days: int = 0) -> ForecastResult:
    """Zero forecast explicitly marked as data-absent"""
    reason = "No data (no similar branch found)"
    return ForecastResult(
        expected_revenue=0.0,
        base_revenue=0.0,
        season_index=1.0,
        external_factor_index=1.0,
        trend_coefficient=1.0,
        confidence=ForecastConfidence.LOW,
        breakdown=ForecastBreakdown(
            base_revenue_reason=reason,
            season_reason="No data",
            external_reason="No data",
            trend_reason="No data",
            recent_average_reason="No data",
        ),
        event_days=event_days,
        data_months=0,
        history_days=history_days,
        data_source=ForecastSource.NONE,
    )


def _ticket_mix(purchases: Iterable[PurchaseFact], start: date, end: date) -> Dict[TicketType, float]:
    totals = {t: 0.0 for t in TicketType}
    for p in purchases:
        if start <= p.purchase_date <= end and p.amount > 0:
            totals[infer_ticket_type(p.ticket_name)] += p.amount
    return totals


def forecast_by_ticket_type(
    expected_revenue: float,
    purchases: Iterable[PurchaseFact],
    event_start: date,
    similar_purchases: Optional[Iterable[PurchaseFact]] = None,
    config: Optional[ForecastSettings] = None,
) -> TicketTypeForecast:
    """
    Split an expected total by the ticket-type revenue mix before the event.

    Uses the branch's own purchases over the lookback, then a similar
    branch's purchases, then the configured default ratios.
    """
    cfg = config or settings.forecast
    start = event_start - timedelta(days=cfg.ticket_mix_lookback_days)
    end = event_start - timedelta(days=1)

    sources = [(purchases, TicketMixSource.HISTORICAL)]
    if similar_purchases is not None:
        sources.append((similar_purchases, TicketMixSource.SIMILAR_BRANCH))

    for rows, source in sources:
        totals = _ticket_mix(rows, start, end)
        grand_total = sum(totals.values())
        if grand_total > 0:
            ratios = {t: totals[t] / grand_total for t in TicketType}
            break
    else:
        source = TicketMixSource.DEFAULT
        ratios = {t: float(cfg.default_ticket_mix.get(t.value, 0.0)) for t in TicketType}

    return TicketTypeForecast(
        amounts={t: expected_revenue * ratios[t] for t in TicketType},
        ratios=ratios,
        data_source=source,
    )
