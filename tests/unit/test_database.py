"""
Unit Tests - Database Connection
"""
from datetime import date

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError

from studyspace_analytics.analytics.models import BranchProfile, DailyRevenue
from studyspace_analytics.database import (
    SqlDataStore,
    close_database,
    get_db,
    get_session_factory,
    init_database,
)
from studyspace_analytics.database.connection import check_database_health, get_engine
from studyspace_analytics.database.models import DimBranch, FactDailyRevenue


@pytest.fixture
def database(tmp_path):
    engine = init_database(f"sqlite:///{tmp_path / 'analytics.db'}")
    yield engine
    close_database()


class TestConnection:
    """Tests for engine and session management"""

    def test_not_initialized(self):
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_creates_tables(self, database):
        tables = set(inspect(database).get_table_names())
        assert {
            "dim_branches", "dim_customers", "dim_external_factors",
            "fact_daily_visits", "fact_purchases", "fact_daily_revenue",
        } <= tables

    def test_init_is_idempotent(self, database, tmp_path):
        assert init_database(f"sqlite:///{tmp_path / 'other.db'}") is database
        assert get_engine() is database

    def test_get_db_commits(self, database):
        with get_db() as db:
            db.add(DimBranch(branch_id="gangnam", name="강남점", region="seoul"))

        with get_db() as db:
            assert db.scalars(select(DimBranch.name)).all() == ["강남점"]

    def test_get_db_rolls_back(self, database):
        with pytest.raises(ValueError):
            with get_db() as db:
                db.add(DimBranch(branch_id="sinchon", name="신촌점"))
                db.flush()
                raise ValueError("boom")

        with get_db() as db:
            assert db.get(DimBranch, "sinchon") is None

    def test_duplicate_day_rejected(self, database):
        """One revenue row per branch and day"""
        store = SqlDataStore(get_session_factory())
        store.add_branch(BranchProfile("gangnam", "강남점"))

        store.add_daily_revenue("gangnam", [DailyRevenue(date(2024, 1, 1), 100.0)])
        with pytest.raises(IntegrityError):
            store.add_daily_revenue("gangnam", [DailyRevenue(date(2024, 1, 1), 200.0)])

        with get_db() as db:
            assert db.scalars(select(FactDailyRevenue.total_revenue)).all() == [100.0]

    def test_health(self, database):
        health = check_database_health()
        assert health["status"] == "healthy"
        assert health["latency_ms"] >= 0

    def test_health_without_database(self):
        assert check_database_health()["status"] == "unhealthy"
