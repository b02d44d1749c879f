"""
Analytics Data Model

Read-only fact records consumed by the analytics engine and the derived,
ephemeral report objects it produces. Facts are supplied by a DataStore;
nothing here is persisted by the engine itself.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


# =============================================================================
# ENUMERATIONS
# =============================================================================

class VisitSegment(str, Enum):
    """Lifecycle/engagement segment from visit recency and frequency"""
    CHURNED = "churned"
    AT_RISK_14 = "at_risk_14"
    RETURNED = "returned"
    NEW_0_7 = "new_0_7"
    VISIT_OVER20 = "visit_over20"
    VISIT_10_20 = "visit_10_20"
    VISIT_UNDER10 = "visit_under10"

    @property
    def label(self) -> str:
        return VISIT_SEGMENT_LABELS[self]

    @property
    def is_negative(self) -> bool:
        """A decrease in this segment's population is an improvement"""
        return self in NEGATIVE_SEGMENTS


class TicketSegment(str, Enum):
    """Segment by the class of access right currently held"""
    FIXED_TICKET = "fixed_ticket"
    TERM_TICKET = "term_ticket"
    TIME_TICKET = "time_ticket"
    DAY_TICKET = "day_ticket"

    @property
    def label(self) -> str:
        return TICKET_SEGMENT_LABELS[self]


class TicketType(str, Enum):
    """Ticket class inferred from a purchased ticket's name"""
    DAY = "day"
    TIME = "time"
    TERM = "term"
    FIXED = "fixed"

    @property
    def rank(self) -> int:
        """Upgrade order: day < time < term < fixed"""
        return TICKET_TYPE_ORDER.index(self)


class ForecastConfidence(str, Enum):
    """Reliability of an expected-revenue forecast"""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ForecastSource(str, Enum):
    """Where a forecast's base rate came from"""
    BRANCH = "branch"
    SIMILAR_BRANCH = "similar_branch"
    NONE = "none"


class EffectSizeLabel(str, Enum):
    """Cohen's d interpretation bands"""
    NONE = "NONE"
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class ComparisonType(str, Enum):
    """Baseline window used as the 'before' sample of an event"""
    YOY = "YOY"  # Same dates one year earlier
    MOM = "MOM"  # Same dates one month earlier


VISIT_SEGMENT_LABELS = {
    VisitSegment.CHURNED: "Churned",
    VisitSegment.AT_RISK_14: "At risk",
    VisitSegment.RETURNED: "Returned",
    VisitSegment.NEW_0_7: "New",
    VisitSegment.VISIT_OVER20: "VIP",
    VisitSegment.VISIT_10_20: "Regular",
    VisitSegment.VISIT_UNDER10: "General",
}

TICKET_SEGMENT_LABELS = {
    TicketSegment.FIXED_TICKET: "Fixed seat",
    TicketSegment.TERM_TICKET: "Term pass",
    TicketSegment.TIME_TICKET: "Time package",
    TicketSegment.DAY_TICKET: "Day ticket",
}

# Most engaged first; drives report ordering and the polarity fallback
SEGMENT_ORDER = [
    VisitSegment.VISIT_OVER20,
    VisitSegment.VISIT_10_20,
    VisitSegment.VISIT_UNDER10,
    VisitSegment.NEW_0_7,
    VisitSegment.RETURNED,
    VisitSegment.AT_RISK_14,
    VisitSegment.CHURNED,
]

TICKET_SEGMENT_ORDER = [
    TicketSegment.FIXED_TICKET,
    TicketSegment.TERM_TICKET,
    TicketSegment.TIME_TICKET,
    TicketSegment.DAY_TICKET,
]

TICKET_TYPE_ORDER = [TicketType.DAY, TicketType.TIME, TicketType.TERM, TicketType.FIXED]

NEGATIVE_SEGMENTS = frozenset({VisitSegment.AT_RISK_14, VisitSegment.CHURNED})


# =============================================================================
# FACTS (inputs)
# =============================================================================

@dataclass(frozen=True)
class VisitFact:
    """One customer-day of physical presence"""
    customer_id: str
    visit_date: date
    has_remaining_term_ticket: bool = False
    has_remaining_time_package: bool = False
    has_remaining_fixed_seat: bool = False


@dataclass(frozen=True)
class CustomerFact:
    """Denormalized per-customer visit summary"""
    customer_id: str
    first_visit_date: date
    last_visit_date: Optional[date] = None


@dataclass(frozen=True)
class PurchaseFact:
    """Single ticket purchase"""
    customer_id: str
    purchase_date: date
    ticket_name: str
    amount: float


@dataclass(frozen=True)
class DailyRevenue:
    """Total revenue of a branch on one calendar day"""
    revenue_date: date
    total_revenue: float


@dataclass(frozen=True)
class ExternalFactorOccurrence:
    """A past or planned external factor (exam period, vacation, holiday...)"""
    factor_type: str
    start_date: date
    end_date: date
    name: str = ""

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class BranchProfile:
    """Branch characteristics used to find a similar branch"""
    branch_id: str
    name: str
    region: Optional[str] = None
    size: Optional[str] = None
    target_audience: Optional[str] = None


@dataclass(frozen=True)
class Window:
    """Inclusive calendar-day range"""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


# =============================================================================
# REPORTS (outputs)
# =============================================================================

@dataclass(frozen=True)
class SegmentChange:
    """Population of one segment before and after an intervention"""
    segment: VisitSegment
    count_before: int
    count_after: int
    change: int
    change_percent: float
    is_negative_segment: bool


@dataclass(frozen=True)
class SegmentMigration:
    """Customers that moved from one segment to another"""
    from_segment: VisitSegment
    to_segment: VisitSegment
    count: int
    is_positive: bool


@dataclass
class SegmentMigrationReport:
    """Complete before/after segment migration report"""
    before_window: Window
    after_window: Window
    segment_changes: List[SegmentChange] = field(default_factory=list)
    migrations: List[SegmentMigration] = field(default_factory=list)
    customers_before: int = 0
    customers_after: int = 0
    dropped_transitions: int = 0

    @property
    def positive_transitions(self) -> int:
        return sum(m.count for m in self.migrations if m.is_positive)

    @property
    def negative_transitions(self) -> int:
        return sum(m.count for m in self.migrations if not m.is_positive)


@dataclass(frozen=True)
class ForecastBreakdown:
    """Human-readable reason for each forecast factor"""
    base_revenue_reason: str
    season_reason: str
    external_reason: str
    trend_reason: str
    recent_average_reason: str = ""


@dataclass(frozen=True)
class ForecastResult:
    """Expected revenue of a future window absent intervention"""
    expected_revenue: float
    base_revenue: float
    season_index: float
    external_factor_index: float
    trend_coefficient: float
    confidence: ForecastConfidence
    breakdown: ForecastBreakdown
    event_days: int = 0
    data_months: int = 0
    history_days: int = 0
    data_source: ForecastSource = ForecastSource.BRANCH
    source_branch_id: Optional[str] = None

    @property
    def is_data_absent(self) -> bool:
        return self.data_source == ForecastSource.NONE

    @property
    def expected_daily_revenue(self) -> float:
        if self.event_days <= 0:
            return 0.0
        return self.expected_revenue / self.event_days


@dataclass(frozen=True)
class TTestResult:
    """Welch's t-test outcome"""
    t_value: float
    p_value: float
    is_significant: bool


@dataclass(frozen=True)
class EffectSize:
    """Cohen's d with its interpretation band"""
    d: float
    interpretation: EffectSizeLabel


@dataclass(frozen=True)
class SignificanceResult:
    """Combined significance verdict for two samples"""
    t_value: float
    p_value: float
    is_significant: bool
    cohens_d: float
    effect_size_label: EffectSizeLabel
