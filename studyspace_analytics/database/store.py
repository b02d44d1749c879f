"""
DataStore Adapters

Bulk, branch-scoped fact reads consumed by the analytics engine. Every
analytic fetches what it needs up front and computes in memory, so each
method here is a single bounded read.

Implementations:
- InMemoryDataStore: dict-backed store for tests and generated datasets
- SqlDataStore: SQLAlchemy-backed store over the branch fact schema
"""

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from studyspace_analytics.analytics.models import (
    BranchProfile,
    CustomerFact,
    DailyRevenue,
    ExternalFactorOccurrence,
    PurchaseFact,
    VisitFact,
)
from studyspace_analytics.database.models import (
    DimBranch,
    DimCustomer,
    DimExternalFactor,
    FactDailyRevenue,
    FactDailyVisit,
    FactPurchase,
)

logger = structlog.get_logger(__name__)


class DataStore(Protocol):
    """Read capabilities the analytics engine needs from persistence"""

    def fetch_visits(self, branch_id: str, start: date, end: date) -> List[VisitFact]:
        """Visits with start <= visit_date <= end"""
        ...

    def fetch_customers(self, branch_id: str) -> List[CustomerFact]:
        """All customers known to the branch"""
        ...

    def fetch_purchases(self, branch_id: str, start: date, end: date) -> List[PurchaseFact]:
        """Purchases with start <= purchase_date <= end"""
        ...

    def fetch_daily_revenue(
        self,
        branch_id: str,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[DailyRevenue]:
        """Daily revenue up to end (inclusive), ascending; limit keeps the N most recent"""
        ...

    def fetch_external_factors(
        self,
        branch_id: str,
        factor_types: Optional[Sequence[str]] = None,
    ) -> List[ExternalFactorOccurrence]:
        """Factor occurrences for the branch, including chain-wide ones"""
        ...

    def fetch_branch(self, branch_id: str) -> Optional[BranchProfile]:
        ...

    def fetch_similar_candidates(
        self,
        branch_id: str,
        min_history_days: int,
    ) -> List[Tuple[BranchProfile, int]]:
        """Other branches with at least min_history_days of revenue, with their history length"""
        ...


def _tail(rows: List[DailyRevenue], limit: Optional[int]) -> List[DailyRevenue]:
    if limit is None:
        return rows
    if limit <= 0:
        return []
    return rows[-limit:]


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryDataStore:
    """
    Dict-backed DataStore.

    Example:
        store = InMemoryDataStore()
        store.add_branch(BranchProfile("gangnam", "Gangnam", region="seoul"))
        store.add_visits("gangnam", visits)
    """

    def __init__(self):
        self._branches: Dict[str, BranchProfile] = {}
        self._customers: Dict[str, Dict[str, CustomerFact]] = defaultdict(dict)
        self._visits: Dict[str, List[VisitFact]] = defaultdict(list)
        self._purchases: Dict[str, List[PurchaseFact]] = defaultdict(list)
        self._revenue: Dict[str, Dict[date, DailyRevenue]] = defaultdict(dict)
        self._factors: Dict[Optional[str], List[ExternalFactorOccurrence]] = defaultdict(list)

    # Loading

    def add_branch(self, profile: BranchProfile) -> None:
        self._branches[profile.branch_id] = profile

    def add_customers(self, branch_id: str, customers: Iterable[CustomerFact]) -> None:
        for customer in customers:
            self._customers[branch_id][customer.customer_id] = customer

    def add_visits(self, branch_id: str, visits: Iterable[VisitFact]) -> None:
        self._visits[branch_id].extend(visits)

    def add_purchases(self, branch_id: str, purchases: Iterable[PurchaseFact]) -> None:
        self._purchases[branch_id].extend(purchases)

    def add_daily_revenue(self, branch_id: str, revenue: Iterable[DailyRevenue]) -> None:
        for row in revenue:
            self._revenue[branch_id][row.revenue_date] = row

    def add_external_factors(
        self,
        occurrences: Iterable[ExternalFactorOccurrence],
        branch_id: Optional[str] = None,
    ) -> None:
        """Register occurrences for one branch, or chain-wide when branch_id is None"""
        self._factors[branch_id].extend(occurrences)

    # DataStore

    def fetch_visits(self, branch_id: str, start: date, end: date) -> List[VisitFact]:
        return [v for v in self._visits.get(branch_id, []) if start <= v.visit_date <= end]

    def fetch_customers(self, branch_id: str) -> List[CustomerFact]:
        return list(self._customers.get(branch_id, {}).values())

    def fetch_purchases(self, branch_id: str, start: date, end: date) -> List[PurchaseFact]:
        return [p for p in self._purchases.get(branch_id, []) if start <= p.purchase_date <= end]

    def fetch_daily_revenue(
        self,
        branch_id: str,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[DailyRevenue]:
        rows = sorted(self._revenue.get(branch_id, {}).values(), key=lambda r: r.revenue_date)
        if end is not None:
            rows = [r for r in rows if r.revenue_date <= end]
        return _tail(rows, limit)

    def fetch_external_factors(
        self,
        branch_id: str,
        factor_types: Optional[Sequence[str]] = None,
    ) -> List[ExternalFactorOccurrence]:
        occurrences = self._factors.get(branch_id, []) + self._factors.get(None, [])
        if factor_types is not None:
            wanted = set(factor_types)
            occurrences = [o for o in occurrences if o.factor_type in wanted]
        return sorted(occurrences, key=lambda o: (o.start_date, o.factor_type))

    def fetch_branch(self, branch_id: str) -> Optional[BranchProfile]:
        return self._branches.get(branch_id)

    def fetch_similar_candidates(
        self,
        branch_id: str,
        min_history_days: int,
    ) -> List[Tuple[BranchProfile, int]]:
        candidates = []
        for other_id, profile in self._branches.items():
            if other_id == branch_id:
                continue
            history_days = len(self._revenue.get(other_id, {}))
            if history_days >= min_history_days:
                candidates.append((profile, history_days))
        return candidates


# =============================================================================
# SQL
# =============================================================================

class SqlDataStore:
    """
    SQLAlchemy-backed DataStore.

    Each call opens its own short-lived session, so one store can serve
    several branch analyses concurrently.

    Example:
        engine = init_database("sqlite:///./studyspace.db")
        store = SqlDataStore(get_session_factory())
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Loading

    def add_branch(self, profile: BranchProfile) -> None:
        with self._session() as session, session.begin():
            session.merge(DimBranch(
                branch_id=profile.branch_id,
                name=profile.name,
                region=profile.region,
                size=profile.size,
                target_audience=profile.target_audience,
            ))

    def add_customers(self, branch_id: str, customers: Iterable[CustomerFact]) -> None:
        with self._session() as session, session.begin():
            session.add_all([
                DimCustomer(
                    branch_id=branch_id,
                    customer_id=c.customer_id,
                    first_visit_date=c.first_visit_date,
                    last_visit_date=c.last_visit_date,
                )
                for c in customers
            ])

    def add_visits(self, branch_id: str, visits: Iterable[VisitFact]) -> None:
        with self._session() as session, session.begin():
            session.add_all([
                FactDailyVisit(
                    branch_id=branch_id,
                    customer_id=v.customer_id,
                    visit_date=v.visit_date,
                    has_remaining_term_ticket=v.has_remaining_term_ticket,
                    has_remaining_time_package=v.has_remaining_time_package,
                    has_remaining_fixed_seat=v.has_remaining_fixed_seat,
                )
                for v in visits
            ])

    def add_purchases(self, branch_id: str, purchases: Iterable[PurchaseFact]) -> None:
        with self._session() as session, session.begin():
            session.add_all([
                FactPurchase(
                    branch_id=branch_id,
                    customer_id=p.customer_id,
                    purchase_date=p.purchase_date,
                    ticket_name=p.ticket_name,
                    amount=p.amount,
                )
                for p in purchases
            ])

    def add_daily_revenue(self, branch_id: str, revenue: Iterable[DailyRevenue]) -> None:
        with self._session() as session, session.begin():
            session.add_all([
                FactDailyRevenue(
                    branch_id=branch_id,
                    revenue_date=r.revenue_date,
                    total_revenue=r.total_revenue,
                )
                for r in revenue
            ])

    def add_external_factors(
        self,
        occurrences: Iterable[ExternalFactorOccurrence],
        branch_id: Optional[str] = None,
    ) -> None:
        with self._session() as session, session.begin():
            session.add_all([
                DimExternalFactor(
                    branch_id=branch_id,
                    factor_type=o.factor_type,
                    name=o.name,
                    start_date=o.start_date,
                    end_date=o.end_date,
                )
                for o in occurrences
            ])

    # DataStore

    def fetch_visits(self, branch_id: str, start: date, end: date) -> List[VisitFact]:
        stmt = (
            select(FactDailyVisit)
            .where(
                FactDailyVisit.branch_id == branch_id,
                FactDailyVisit.visit_date >= start,
                FactDailyVisit.visit_date <= end,
            )
            .order_by(FactDailyVisit.visit_date, FactDailyVisit.customer_id)
        )
        with self._session() as session:
            rows = session.scalars(stmt).all()
            visits = [
                VisitFact(
                    customer_id=r.customer_id,
                    visit_date=r.visit_date,
                    has_remaining_term_ticket=bool(r.has_remaining_term_ticket),
                    has_remaining_time_package=bool(r.has_remaining_time_package),
                    has_remaining_fixed_seat=bool(r.has_remaining_fixed_seat),
                )
                for r in rows
            ]

        logger.debug("Visits fetched", branch_id=branch_id, rows=len(visits))
        return visits

    def fetch_customers(self, branch_id: str) -> List[CustomerFact]:
        stmt = select(DimCustomer).where(DimCustomer.branch_id == branch_id)
        with self._session() as session:
            return [
                CustomerFact(
                    customer_id=r.customer_id,
                    first_visit_date=r.first_visit_date,
                    last_visit_date=r.last_visit_date,
                )
                for r in session.scalars(stmt).all()
            ]

    def fetch_purchases(self, branch_id: str, start: date, end: date) -> List[PurchaseFact]:
        stmt = (
            select(FactPurchase)
            .where(
                FactPurchase.branch_id == branch_id,
                FactPurchase.purchase_date >= start,
                FactPurchase.purchase_date <= end,
            )
            .order_by(FactPurchase.purchase_date, FactPurchase.id)
        )
        with self._session() as session:
            return [
                PurchaseFact(
                    customer_id=r.customer_id,
                    purchase_date=r.purchase_date,
                    ticket_name=r.ticket_name,
                    amount=float(r.amount),
                )
                for r in session.scalars(stmt).all()
            ]

    def fetch_daily_revenue(
        self,
        branch_id: str,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[DailyRevenue]:
        if limit is not None and limit <= 0:
            return []

        stmt = select(FactDailyRevenue).where(FactDailyRevenue.branch_id == branch_id)
        if end is not None:
            stmt = stmt.where(FactDailyRevenue.revenue_date <= end)
        stmt = stmt.order_by(FactDailyRevenue.revenue_date.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._session() as session:
            rows = [
                DailyRevenue(revenue_date=r.revenue_date, total_revenue=float(r.total_revenue))
                for r in session.scalars(stmt).all()
            ]

        rows.reverse()
        return rows

    def fetch_external_factors(
        self,
        branch_id: str,
        factor_types: Optional[Sequence[str]] = None,
    ) -> List[ExternalFactorOccurrence]:
        stmt = select(DimExternalFactor).where(
            or_(DimExternalFactor.branch_id == branch_id, DimExternalFactor.branch_id.is_(None))
        )
        if factor_types is not None:
            stmt = stmt.where(DimExternalFactor.factor_type.in_(list(factor_types)))
        stmt = stmt.order_by(DimExternalFactor.start_date, DimExternalFactor.factor_type)

        with self._session() as session:
            return [
                ExternalFactorOccurrence(
                    factor_type=r.factor_type,
                    start_date=r.start_date,
                    end_date=r.end_date,
                    name=r.name or "",
                )
                for r in session.scalars(stmt).all()
            ]

    def fetch_branch(self, branch_id: str) -> Optional[BranchProfile]:
        with self._session() as session:
            row = session.get(DimBranch, branch_id)
            if row is None:
                return None
            return _to_profile(row)

    def fetch_similar_candidates(
        self,
        branch_id: str,
        min_history_days: int,
    ) -> List[Tuple[BranchProfile, int]]:
        history = func.count(FactDailyRevenue.id)
        stmt = (
            select(DimBranch, history)
            .join(FactDailyRevenue, FactDailyRevenue.branch_id == DimBranch.branch_id)
            .where(DimBranch.branch_id != branch_id)
            .group_by(DimBranch.branch_id)
            .having(history >= min_history_days)
        )
        with self._session() as session:
            return [(_to_profile(branch), int(days)) for branch, days in session.execute(stmt).all()]


def _to_profile(row: DimBranch) -> BranchProfile:
    return BranchProfile(
        branch_id=row.branch_id,
        name=row.name,
        region=row.region,
        size=row.size,
        target_audience=row.target_audience,
    )
