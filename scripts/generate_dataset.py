#!/usr/bin/env python
"""
Study-Space Dataset Generator
Generates branches, customers, visits, purchases and daily revenue, writes
them to Parquet/CSV and optionally seeds the analytics database.

Usage:
    python scripts/generate_dataset.py --branches 3 --customers 300
    python scripts/generate_dataset.py --seed-db --database-url sqlite:///./studyspace.db
"""

import argparse
from datetime import date, timedelta
from pathlib import Path

from studyspace_analytics.config.logging import configure_logging
from studyspace_analytics.data import StudySpaceDataGenerator
from studyspace_analytics.database import SqlDataStore, close_database, get_session_factory, init_database
from studyspace_analytics.database.connection import check_database_health

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a synthetic study-space dataset")
    parser.add_argument("--branches", type=int, default=3, help="Number of branches")
    parser.add_argument("--customers", type=int, default=300, help="Customers per branch")
    parser.add_argument("--days", type=int, default=540, help="Days of history to simulate")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="Last simulated day (YYYY-MM-DD)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--event-start", type=date.fromisoformat, default=None, help="Event start (YYYY-MM-DD)")
    parser.add_argument("--event-end", type=date.fromisoformat, default=None, help="Event end (YYYY-MM-DD)")
    parser.add_argument("--event-lift", type=float, default=1.5, help="Visit probability multiplier during the event")
    parser.add_argument("--output", type=Path, default=OUTPUT_DIR, help="Output directory")
    parser.add_argument("--seed-db", action="store_true", help="Also load the dataset into the database")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL (defaults to DATABASE_URL)")
    return parser.parse_args()


def main():
    args = parse_args()
    configure_logging()

    print("=" * 60)
    print("📚 Study-Space Dataset Generator")
    print("=" * 60 + "\n")

    end = args.end or date.today()
    start = end - timedelta(days=args.days)

    event = None
    if args.event_start and args.event_end:
        event = (args.event_start, args.event_end, args.event_lift)

    generator = StudySpaceDataGenerator(seed=args.seed)
    dataset = generator.generate_all(
        n_branches=args.branches,
        customers_per_branch=args.customers,
        start=start,
        end=end,
        event=event,
    )
    paths = generator.save(dataset, str(args.output))

    if args.seed_db:
        init_database(args.database_url)
        try:
            health = check_database_health()
            print(f"   🗄️  Database {health['status']} ({health.get('latency_ms', '-')} ms)")
            dataset.load_into(SqlDataStore(get_session_factory()))
        finally:
            close_database()
        print("   ✅ Database seeded")

    # Summary
    print("\n" + "=" * 60)
    print("✅ Dataset Generation Complete!")
    print("=" * 60)
    print(f"\n📁 Output: {args.output}\n")

    for name, path in paths.items():
        size = path.stat().st_size / 1024 / 1024
        print(f"   📄 {path.name}: ({size:.2f} MB)")


if __name__ == "__main__":
    main()
