"""
Unit Tests - DataStore Adapters
"""
from datetime import date, timedelta

import pytest

from studyspace_analytics.analytics.models import (
    BranchProfile,
    CustomerFact,
    DailyRevenue,
    ExternalFactorOccurrence,
    PurchaseFact,
    VisitFact,
)
from studyspace_analytics.database.store import InMemoryDataStore

GANGNAM = BranchProfile("gangnam", "강남점", region="seoul", size="large", target_audience="students")
SINCHON = BranchProfile("sinchon", "신촌점", region="seoul", size="medium", target_audience="students")
NOWON = BranchProfile("nowon", "노원점", region="seoul", size="small", target_audience="exam_takers")


def revenue(start: date, days: int, value: float = 500_000.0):
    return [DailyRevenue(start + timedelta(days=i), value + i) for i in range(days)]


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Both adapters loaded with the same facts"""
    if request.param == "memory":
        store = InMemoryDataStore()
    else:
        store = request.getfixturevalue("sql_store")

    for profile in (GANGNAM, SINCHON, NOWON):
        store.add_branch(profile)

    store.add_customers("gangnam", [
        CustomerFact("c1", date(2024, 1, 5), date(2024, 3, 2)),
        CustomerFact("c2", date(2024, 2, 1), None),
    ])
    store.add_visits("gangnam", [
        VisitFact("c1", date(2024, 1, 5), has_remaining_term_ticket=True),
        VisitFact("c1", date(2024, 3, 2), has_remaining_fixed_seat=True),
        VisitFact("c2", date(2024, 2, 1), has_remaining_time_package=True),
    ])
    store.add_visits("sinchon", [VisitFact("x9", date(2024, 2, 1))])
    store.add_purchases("gangnam", [
        PurchaseFact("c1", date(2024, 1, 5), "4주 정기권", 160000.0),
        PurchaseFact("c2", date(2024, 2, 1), "시간패키지 50시간", 80000.0),
        PurchaseFact("c1", date(2024, 3, 2), "고정석 4주", 230000.0),
    ])

    store.add_daily_revenue("gangnam", revenue(date(2024, 1, 1), 10))
    store.add_daily_revenue("sinchon", revenue(date(2023, 10, 1), 120))
    store.add_daily_revenue("nowon", revenue(date(2024, 1, 1), 40))

    store.add_external_factors([
        ExternalFactorOccurrence("exam", date(2024, 4, 15), date(2024, 4, 28), "중간고사"),
        ExternalFactorOccurrence("vacation", date(2024, 7, 1), date(2024, 8, 25), "여름방학"),
    ])
    store.add_external_factors(
        [ExternalFactorOccurrence("holiday", date(2024, 2, 9), date(2024, 2, 12), "설날")],
        branch_id="gangnam",
    )
    store.add_external_factors(
        [ExternalFactorOccurrence("holiday", date(2024, 5, 1), date(2024, 5, 1), "개교기념일")],
        branch_id="sinchon",
    )
    return store


class TestDataStore:
    """Behaviour shared by every DataStore adapter"""

    def test_fetch_visits_inclusive_range(self, store):
        visits = store.fetch_visits("gangnam", date(2024, 1, 5), date(2024, 2, 1))

        assert sorted((v.customer_id, v.visit_date) for v in visits) == [
            ("c1", date(2024, 1, 5)),
            ("c2", date(2024, 2, 1)),
        ]

    def test_visit_flags(self, store):
        visits = {(v.customer_id, v.visit_date): v for v in store.fetch_visits("gangnam", date.min, date.max)}

        assert visits[("c1", date(2024, 1, 5))].has_remaining_term_ticket is True
        assert visits[("c1", date(2024, 3, 2))].has_remaining_fixed_seat is True
        assert visits[("c2", date(2024, 2, 1))].has_remaining_time_package is True
        assert visits[("c2", date(2024, 2, 1))].has_remaining_fixed_seat is False

    def test_branch_scoping(self, store):
        assert {v.customer_id for v in store.fetch_visits("sinchon", date.min, date.max)} == {"x9"}
        assert store.fetch_visits("nowon", date.min, date.max) == []

    def test_fetch_customers(self, store):
        customers = sorted(store.fetch_customers("gangnam"), key=lambda c: c.customer_id)

        assert customers == [
            CustomerFact("c1", date(2024, 1, 5), date(2024, 3, 2)),
            CustomerFact("c2", date(2024, 2, 1), None),
        ]
        assert store.fetch_customers("nowhere") == []

    def test_fetch_purchases(self, store):
        purchases = store.fetch_purchases("gangnam", date(2024, 2, 1), date(2024, 3, 2))

        assert [p.ticket_name for p in purchases] == ["시간패키지 50시간", "고정석 4주"]
        assert purchases[1].amount == pytest.approx(230000.0)

    def test_daily_revenue_ascending(self, store):
        rows = store.fetch_daily_revenue("gangnam")

        assert len(rows) == 10
        assert [r.revenue_date for r in rows] == sorted(r.revenue_date for r in rows)

    def test_daily_revenue_end_and_limit(self, store):
        """limit keeps the most recent rows up to end"""
        rows = store.fetch_daily_revenue("gangnam", end=date(2024, 1, 6), limit=3)

        assert [r.revenue_date for r in rows] == [date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 6)]
        assert rows[-1].total_revenue == pytest.approx(500_005.0)

    def test_daily_revenue_zero_limit(self, store):
        assert store.fetch_daily_revenue("gangnam", limit=0) == []

    def test_external_factors_include_chain_wide(self, store):
        """Branch occurrences plus chain-wide ones, never another branch's"""
        names = [o.name for o in store.fetch_external_factors("gangnam")]

        assert names == ["설날", "중간고사", "여름방학"]

    def test_external_factors_by_type(self, store):
        occurrences = store.fetch_external_factors("sinchon", ["holiday"])

        assert [o.name for o in occurrences] == ["개교기념일"]
        assert occurrences[0].duration_days == 1

    def test_fetch_branch(self, store):
        assert store.fetch_branch("gangnam") == GANGNAM
        assert store.fetch_branch("nowhere") is None

    def test_similar_candidates(self, store):
        """Other branches with enough revenue history"""
        candidates = store.fetch_similar_candidates("gangnam", 90)

        assert candidates == [(SINCHON, 120)]

    def test_similar_candidates_exclude_self(self, store):
        candidates = dict(
            (profile.branch_id, days) for profile, days in store.fetch_similar_candidates("sinchon", 30)
        )
        assert candidates == {"nowon": 40}
