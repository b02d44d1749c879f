"""
Analytics Module
"""
from .dashboard import DashboardAggregator, DashboardSummary
from .engine import BranchImpact, EventImpactAnalyzer, EventImpactSummary
from .forecast import RevenueForecaster, forecast_by_ticket_type
from .migration import SegmentMigrationTracker
from .models import ComparisonType, ForecastResult, SegmentMigrationReport, TicketSegment, TicketType, VisitSegment
from .performance import EventScore, Verdict, score_event
from .segments import classify_ticket_segment, classify_visit_segment, infer_ticket_type
from .statistics import StatisticalTester

__all__ = [
    "DashboardAggregator",
    "DashboardSummary",
    "BranchImpact",
    "EventImpactAnalyzer",
    "EventImpactSummary",
    "RevenueForecaster",
    "forecast_by_ticket_type",
    "SegmentMigrationTracker",
    "ComparisonType",
    "ForecastResult",
    "SegmentMigrationReport",
    "TicketSegment",
    "TicketType",
    "VisitSegment",
    "EventScore",
    "Verdict",
    "score_event",
    "classify_ticket_segment",
    "classify_visit_segment",
    "infer_ticket_type",
    "StatisticalTester",
]
