"""
Test Suite Configuration
"""
from datetime import date, timedelta
from typing import Generator, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studyspace_analytics.analytics.models import (
    BranchProfile,
    CustomerFact,
    PurchaseFact,
    VisitFact,
)
from studyspace_analytics.config import Settings
from studyspace_analytics.config.settings import SegmentationSettings
from studyspace_analytics.database.models import Base
from studyspace_analytics.database.store import InMemoryDataStore, SqlDataStore


REFERENCE_DATE = date(2024, 6, 30)


def daily_visits(customer_id: str, days: List[date], **flags) -> List[VisitFact]:
    """One VisitFact per listed day"""
    return [VisitFact(customer_id=customer_id, visit_date=d, **flags) for d in days]


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def segmentation_config() -> SegmentationSettings:
    """Default segmentation thresholds"""
    return SegmentationSettings()


@pytest.fixture
def reference_date() -> date:
    return REFERENCE_DATE


@pytest.fixture
def sample_customers() -> List[CustomerFact]:
    """Customers covering the main visit segments as of REFERENCE_DATE"""
    ref = REFERENCE_DATE
    return [
        CustomerFact("vip", ref - timedelta(days=200), ref),
        CustomerFact("regular", ref - timedelta(days=200), ref - timedelta(days=1)),
        CustomerFact("at_risk", ref - timedelta(days=100), ref - timedelta(days=20)),
        CustomerFact("churned", ref - timedelta(days=300), ref - timedelta(days=60)),
        CustomerFact("newbie", ref - timedelta(days=3), ref - timedelta(days=1)),
        CustomerFact("returner", ref - timedelta(days=150), ref - timedelta(days=2)),
    ]


@pytest.fixture
def sample_visits() -> List[VisitFact]:
    """Visits matching sample_customers"""
    ref = REFERENCE_DATE
    visits: List[VisitFact] = []
    # 22 visit days in the last 30 days, term ticket holder
    visits += daily_visits("vip", [ref - timedelta(days=200), ref - timedelta(days=35)])
    visits += daily_visits(
        "vip", [ref - timedelta(days=i) for i in range(22)], has_remaining_term_ticket=True
    )
    # 12 visit days, time package
    visits += daily_visits("regular", [ref - timedelta(days=200), ref - timedelta(days=40)])
    visits += daily_visits(
        "regular", [ref - timedelta(days=i) for i in range(1, 13)], has_remaining_time_package=True
    )
    visits += daily_visits("at_risk", [ref - timedelta(days=100), ref - timedelta(days=20)])
    visits += daily_visits("churned", [ref - timedelta(days=300), ref - timedelta(days=60)])
    visits += daily_visits("newbie", [ref - timedelta(days=3), ref - timedelta(days=1)])
    # Dormant for months, then back twice
    visits += daily_visits(
        "returner",
        [ref - timedelta(days=150), ref - timedelta(days=90), ref - timedelta(days=5), ref - timedelta(days=2)],
    )
    return visits


@pytest.fixture
def sample_purchases() -> List[PurchaseFact]:
    ref = REFERENCE_DATE
    return [
        PurchaseFact("vip", ref - timedelta(days=200), "당일권 4시간", 6000.0),
        PurchaseFact("vip", ref - timedelta(days=25), "4주 정기권", 160000.0),
        PurchaseFact("regular", ref - timedelta(days=12), "시간패키지 50시간", 80000.0),
        PurchaseFact("newbie", ref - timedelta(days=3), "당일권 12시간", 12000.0),
        PurchaseFact("newbie", ref - timedelta(days=1), "당일권 4시간", 6000.0),
        PurchaseFact("returner", ref - timedelta(days=5), "당일권 4시간", 6000.0),
    ]


@pytest.fixture
def in_memory_store(sample_customers, sample_visits, sample_purchases) -> InMemoryDataStore:
    """In-memory store holding the sample facts under branch 'gangnam'"""
    store = InMemoryDataStore()
    store.add_branch(BranchProfile("gangnam", "강남점", region="seoul", size="large", target_audience="students"))
    store.add_customers("gangnam", sample_customers)
    store.add_visits("gangnam", sample_visits)
    store.add_purchases("gangnam", sample_purchases)
    return store


@pytest.fixture
def sql_session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """SQLite file database with all tables created"""
    engine = create_engine(f"sqlite:///{tmp_path / 'studyspace.db'}", echo=False)
    Base.metadata.create_all(engine)

    yield sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    engine.dispose()


@pytest.fixture
def sql_store(sql_session_factory) -> SqlDataStore:
    return SqlDataStore(sql_session_factory)
