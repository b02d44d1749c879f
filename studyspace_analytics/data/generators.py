"""
Synthetic Data Generator

Generates realistic study-space data for testing and development.
Includes:
- Branches with region, size and target audience
- Customers with behavioural profiles (regulars, casuals, lapsing, newcomers)
- Daily visits with remaining-ticket flags
- Ticket purchases with Korean ticket names
- Daily revenue rolled up from purchases
- Chain-wide external factors (exam periods, vacations)
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import polars as pl
import structlog
from faker import Faker

from studyspace_analytics.analytics.models import (
    BranchProfile,
    CustomerFact,
    DailyRevenue,
    ExternalFactorOccurrence,
    PurchaseFact,
    TicketType,
    VisitFact,
)
from studyspace_analytics.analytics.segments import infer_ticket_type
from studyspace_analytics.quality.validators import (
    ValidationResult,
    ValidationStatus,
    create_customers_validator,
    create_daily_revenue_validator,
    create_purchases_validator,
    create_visits_validator,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

REGIONS = ["강남", "서초", "신촌", "노원", "분당", "일산"]
SIZES = ["small", "medium", "large"]
AUDIENCES = ["students", "exam_takers", "workers"]

# (ticket name, price, days of access; 0 = single visit)
TICKET_CATALOG: Dict[TicketType, List[Tuple[str, float, int]]] = {
    TicketType.DAY: [("당일권 4시간", 6000.0, 0), ("당일권 12시간", 12000.0, 0)],
    TicketType.TIME: [("시간패키지 50시간", 80000.0, 0), ("시간권 100시간", 150000.0, 0)],
    TicketType.TERM: [("2주 정기권", 90000.0, 14), ("4주 정기권", 160000.0, 28)],
    TicketType.FIXED: [("고정석 4주", 230000.0, 28)],
}

# Visits a time package lasts
PACKAGE_VISITS = 10

FACT_VALIDATORS = {
    "customers": create_customers_validator,
    "visits": create_visits_validator,
    "purchases": create_purchases_validator,
    "daily_revenue": create_daily_revenue_validator,
}

# profile: (share, daily visit probability, preferred ticket type weights day/time/term/fixed)
PROFILES = {
    "regular": (0.25, 0.75, [0.05, 0.20, 0.45, 0.30]),
    "casual": (0.40, 0.25, [0.55, 0.35, 0.10, 0.00]),
    "lapsing": (0.20, 0.30, [0.50, 0.30, 0.20, 0.00]),
    "newcomer": (0.15, 0.45, [0.40, 0.30, 0.25, 0.05]),
}


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class GeneratedDataset:
    """Facts for a set of branches, keyed by branch_id"""
    branches: List[BranchProfile] = field(default_factory=list)
    customers: Dict[str, List[CustomerFact]] = field(default_factory=dict)
    visits: Dict[str, List[VisitFact]] = field(default_factory=dict)
    purchases: Dict[str, List[PurchaseFact]] = field(default_factory=dict)
    daily_revenue: Dict[str, List[DailyRevenue]] = field(default_factory=dict)
    external_factors: List[ExternalFactorOccurrence] = field(default_factory=list)

    def load_into(self, store) -> None:
        """Write every fact into a DataStore implementation with add_* methods"""
        for profile in self.branches:
            branch_id = profile.branch_id
            store.add_branch(profile)
            store.add_customers(branch_id, self.customers.get(branch_id, []))
            store.add_visits(branch_id, self.visits.get(branch_id, []))
            store.add_purchases(branch_id, self.purchases.get(branch_id, []))
            store.add_daily_revenue(branch_id, self.daily_revenue.get(branch_id, []))
        store.add_external_factors(self.external_factors)

    def to_frames(self) -> Dict[str, pl.DataFrame]:
        """Flatten the dataset into one polars frame per fact table"""
        def rows(facts: Dict[str, list], columns: List[str]) -> pl.DataFrame:
            records = [
                {"branch_id": branch_id, **{c: getattr(f, c) for c in columns}}
                for branch_id, items in facts.items()
                for f in items
            ]
            return pl.DataFrame(records) if records else pl.DataFrame(schema=["branch_id"] + columns)

        return {
            "branches": pl.DataFrame([vars(b) for b in self.branches]),
            "customers": rows(self.customers, ["customer_id", "first_visit_date", "last_visit_date"]),
            "visits": rows(self.visits, [
                "customer_id", "visit_date", "has_remaining_term_ticket",
                "has_remaining_time_package", "has_remaining_fixed_seat",
            ]),
            "purchases": rows(self.purchases, ["customer_id", "purchase_date", "ticket_name", "amount"]),
            "daily_revenue": rows(self.daily_revenue, ["revenue_date", "total_revenue"]),
            "external_factors": pl.DataFrame([
                {"factor_type": o.factor_type, "name": o.name, "start_date": o.start_date, "end_date": o.end_date}
                for o in self.external_factors
            ]),
        }


# =============================================================================
# GENERATORS
# =============================================================================

class BranchGenerator:
    """Generate branch profiles"""

    def __init__(self, fake: Faker, rng: np.random.Generator):
        self.fake = fake
        self.rng = rng

    def generate(self, n: int = 3) -> List[BranchProfile]:
        branches = []
        for i in range(n):
            region = REGIONS[i % len(REGIONS)]
            branches.append(BranchProfile(
                branch_id=f"branch-{i + 1:03d}",
                name=f"{region} {self.fake.unique.bothify('##')}호점",
                region=region,
                size=str(self.rng.choice(SIZES)),
                target_audience=str(self.rng.choice(AUDIENCES)),
            ))
        return branches


class CustomerActivityGenerator:
    """
    Generate customers of one branch with their visits and purchases.

    Each customer gets a behavioural profile that fixes how often they come
    and which ticket type they prefer. Purchases are made whenever the
    customer has no live access right on a visit day; remaining-ticket flags
    on each visit reflect the access rights live on that day.
    """

    def __init__(self, fake: Faker, rng: np.random.Generator):
        self.fake = fake
        self.rng = rng
        self.profile_names = list(PROFILES.keys())
        self.profile_shares = [PROFILES[p][0] for p in self.profile_names]

    def _active_span(self, profile: str, start: date, end: date) -> Tuple[date, date]:
        total_days = (end - start).days + 1
        if profile == "newcomer":
            first = end - timedelta(days=int(self.rng.integers(0, min(45, total_days))))
            return first, end
        first = start + timedelta(days=int(self.rng.integers(0, max(1, total_days - 30))))
        if profile == "lapsing":
            remaining = (end - first).days
            last = first + timedelta(days=int(self.rng.integers(0, max(1, remaining - 20))))
            return first, last
        return first, end

    def _visit_days(
        self,
        first: date,
        last: date,
        probability: float,
        lift: Optional[Tuple[date, date, float]],
    ) -> List[date]:
        span = (last - first).days + 1
        days = [first + timedelta(days=i) for i in range(span)]
        probabilities = np.full(span, probability)
        if lift is not None:
            lift_start, lift_end, factor = lift
            for i, day in enumerate(days):
                if lift_start <= day <= lift_end:
                    probabilities[i] = min(0.95, probability * factor)
        mask = self.rng.random(span) < probabilities
        mask[0] = True  # First visit always happens
        return [day for day, visited in zip(days, mask) if visited]

    def _pick_ticket(self, weights: List[float]) -> Tuple[str, float, int]:
        ticket_type = list(TICKET_CATALOG.keys())[self.rng.choice(4, p=weights)]
        options = TICKET_CATALOG[ticket_type]
        return options[int(self.rng.integers(0, len(options)))]

    def generate(
        self,
        n: int,
        start: date,
        end: date,
        lift: Optional[Tuple[date, date, float]] = None,
    ) -> Tuple[List[CustomerFact], List[VisitFact], List[PurchaseFact]]:
        """
        Generate n customers active between start and end.

        Args:
            n: Number of customers
            start: First day of the simulated history
            end: Last day of the simulated history
            lift: Optional (start, end, factor) raising visit probability during an event

        Returns:
            Tuple of (customers, visits, purchases)
        """
        customers: List[CustomerFact] = []
        visits: List[VisitFact] = []
        purchases: List[PurchaseFact] = []

        profiles = self.rng.choice(self.profile_names, size=n, p=self.profile_shares)
        for profile in profiles:
            _, probability, weights = PROFILES[str(profile)]
            customer_id = self.fake.unique.bothify("C-########")
            first, last = self._active_span(str(profile), start, end)
            days = self._visit_days(first, last, probability, lift)

            term_until: Optional[date] = None
            fixed_until: Optional[date] = None
            package_left = 0

            for day in days:
                has_term = term_until is not None and day <= term_until
                has_fixed = fixed_until is not None and day <= fixed_until
                if not (has_term or has_fixed or package_left > 0):
                    name, price, access_days = self._pick_ticket(weights)
                    purchases.append(PurchaseFact(customer_id, day, name, price))
                    ticket_type = infer_ticket_type(name)
                    if ticket_type == TicketType.FIXED:
                        fixed_until = day + timedelta(days=access_days - 1)
                    elif ticket_type == TicketType.TERM:
                        term_until = day + timedelta(days=access_days - 1)
                    elif ticket_type == TicketType.TIME:
                        package_left = PACKAGE_VISITS

                if package_left > 0:
                    package_left -= 1

                visits.append(VisitFact(
                    customer_id=customer_id,
                    visit_date=day,
                    has_remaining_term_ticket=term_until is not None and day < term_until,
                    has_remaining_time_package=package_left > 0,
                    has_remaining_fixed_seat=fixed_until is not None and day < fixed_until,
                ))

            customers.append(CustomerFact(
                customer_id=customer_id,
                first_visit_date=days[0],
                last_visit_date=days[-1],
            ))

        return customers, visits, purchases


class RevenueGenerator:
    """Roll purchases up into one revenue row per calendar day"""

    def generate(self, purchases: List[PurchaseFact], start: date, end: date) -> List[DailyRevenue]:
        calendar = pl.DataFrame({
            "revenue_date": pl.date_range(start, end, interval="1d", eager=True),
        })
        if purchases:
            totals = (
                pl.DataFrame(
                    [{"revenue_date": p.purchase_date, "amount": p.amount} for p in purchases],
                    schema={"revenue_date": pl.Date, "amount": pl.Float64},
                )
                .group_by("revenue_date")
                .agg(pl.col("amount").sum().alias("total_revenue"))
            )
            daily = calendar.join(totals, on="revenue_date", how="left")
        else:
            daily = calendar.with_columns(pl.lit(None, dtype=pl.Float64).alias("total_revenue"))

        daily = daily.with_columns(pl.col("total_revenue").fill_null(0.0)).sort("revenue_date")
        return [
            DailyRevenue(revenue_date=row["revenue_date"], total_revenue=row["total_revenue"])
            for row in daily.iter_rows(named=True)
        ]


class ExternalFactorGenerator:
    """Chain-wide exam periods and school vacations per year"""

    def generate(self, start: date, end: date) -> List[ExternalFactorOccurrence]:
        occurrences = []
        for year in range(start.year, end.year + 1):
            occurrences.extend([
                ExternalFactorOccurrence("exam", date(year, 4, 15), date(year, 4, 28), f"{year} 1학기 중간고사"),
                ExternalFactorOccurrence("exam", date(year, 6, 10), date(year, 6, 23), f"{year} 1학기 기말고사"),
                ExternalFactorOccurrence("exam", date(year, 10, 14), date(year, 10, 27), f"{year} 2학기 중간고사"),
                ExternalFactorOccurrence("exam", date(year, 12, 2), date(year, 12, 15), f"{year} 2학기 기말고사"),
                ExternalFactorOccurrence("vacation", date(year, 7, 1), date(year, 8, 25), f"{year} 여름방학"),
            ])
        return [o for o in occurrences if o.end_date >= start and o.start_date <= end]


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class StudySpaceDataGenerator:
    """
    Main data generator orchestrator.

    Example:
        generator = StudySpaceDataGenerator(seed=7)
        dataset = generator.generate_all(n_branches=2, customers_per_branch=100,
                                         start=date(2023, 1, 1), end=date(2024, 6, 30))
        dataset.load_into(InMemoryDataStore())
    """

    def __init__(self, seed: int = 42, locale: str = "ko_KR"):
        self.fake = Faker(locale)
        self.fake.seed_instance(seed)
        self.rng = np.random.default_rng(seed)

    def generate_all(
        self,
        n_branches: int = 3,
        customers_per_branch: int = 300,
        start: Optional[date] = None,
        end: Optional[date] = None,
        event: Optional[Tuple[date, date, float]] = None,
    ) -> GeneratedDataset:
        """
        Generate a complete dataset.

        Args:
            n_branches: Number of branches
            customers_per_branch: Customers generated per branch
            start: First simulated day (default: 18 months before end)
            end: Last simulated day (default: today)
            event: Optional (start, end, visit lift) applied to every branch

        Returns:
            GeneratedDataset
        """
        end = end or date.today()
        start = start or end - timedelta(days=540)

        dataset = GeneratedDataset(
            branches=BranchGenerator(self.fake, self.rng).generate(n_branches),
            external_factors=ExternalFactorGenerator().generate(start, end),
        )

        activity = CustomerActivityGenerator(self.fake, self.rng)
        revenue = RevenueGenerator()
        for profile in dataset.branches:
            customers, visits, purchases = activity.generate(customers_per_branch, start, end, lift=event)
            dataset.customers[profile.branch_id] = customers
            dataset.visits[profile.branch_id] = visits
            dataset.purchases[profile.branch_id] = purchases
            dataset.daily_revenue[profile.branch_id] = revenue.generate(purchases, start, end)

            logger.info(
                "Branch data generated",
                branch_id=profile.branch_id,
                customers=len(customers),
                visits=len(visits),
                purchases=len(purchases),
            )

        return dataset

    def validate(self, dataset: GeneratedDataset) -> Dict[str, List[ValidationResult]]:
        """Run the fact validators over every branch's tables"""
        frames = dataset.to_frames()
        results: Dict[str, List[ValidationResult]] = {}
        for name, factory in FACT_VALIDATORS.items():
            df = frames[name]
            parts = df.partition_by("branch_id") if not df.is_empty() else [df]
            results[name] = [factory().validate(part) for part in parts]
        return results

    def save(self, dataset: GeneratedDataset, output_dir: str) -> Dict[str, Path]:
        """Validate, then save generated data as Parquet and CSV files"""
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)

        for name, results in self.validate(dataset).items():
            failed = [r for r in results if r.status == ValidationStatus.FAILED]
            if failed:
                logger.warning("Generated table failed validation", table=name, branches=len(failed))

        paths = {}
        for name, df in dataset.to_frames().items():
            parquet_path = directory / f"{name}.parquet"
            df.write_parquet(parquet_path)
            df.write_csv(directory / f"{name}.csv")
            paths[name] = parquet_path
            logger.info("Saved dataset table", table=name, rows=df.height, path=str(parquet_path))
        return paths
