"""
Unit Tests - Data Quality
"""
from datetime import date

import polars as pl
import pytest

from studyspace_analytics.quality.validators import (
    AnalyticsError,
    FactValidator,
    InvalidWindowError,
    ValidationSeverity,
    ValidationStatus,
    create_customers_validator,
    create_daily_revenue_validator,
    create_purchases_validator,
    create_visits_validator,
    validate_window,
)


class TestValidateWindow:
    """Tests for window validation"""

    def test_valid_window(self):
        """Single-day and multi-day windows pass"""
        validate_window(date(2024, 3, 1), date(2024, 3, 1))
        validate_window(date(2024, 3, 1), date(2024, 3, 31))

    def test_inverted_window(self):
        """End before start raises with both dates attached"""
        with pytest.raises(InvalidWindowError) as exc_info:
            validate_window(date(2024, 3, 31), date(2024, 3, 1), name="event window")

        error = exc_info.value
        assert error.start == date(2024, 3, 31)
        assert error.end == date(2024, 3, 1)
        assert "event window" in str(error)

    def test_error_hierarchy(self):
        """InvalidWindowError is an AnalyticsError and a ValueError"""
        assert issubclass(InvalidWindowError, AnalyticsError)
        assert issubclass(AnalyticsError, ValueError)


class TestFactValidator:
    """Tests for FactValidator"""

    def test_not_null_check_passes(self):
        """Test not null check with valid data"""
        df = pl.DataFrame({"customer_id": ["c1", "c2", "c3"]})

        result = FactValidator().add_not_null_check("customer_id").validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_not_null_check_fails(self):
        """Test not null check with null values"""
        df = pl.DataFrame({"customer_id": ["c1", None, "c3"]})

        result = FactValidator().add_not_null_check("customer_id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.failed_checks == 1
        assert result.failed[0].failed_rows == 1

    def test_composite_unique_check(self):
        """Duplicate customer-days fail the composite check"""
        df = pl.DataFrame({
            "customer_id": ["c1", "c1", "c2"],
            "visit_date": [date(2024, 1, 1), date(2024, 1, 1), date(2024, 1, 1)],
        })

        result = FactValidator().add_unique_check(["customer_id", "visit_date"]).validate(df)

        assert result.status == ValidationStatus.FAILED

    def test_range_check(self):
        """Values outside the range are counted"""
        df = pl.DataFrame({"amount": [10.0, 50.0, -5.0, 200.0]})

        result = FactValidator().add_range_check("amount", min_value=0, max_value=100).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 2

    def test_warning_gives_partial(self):
        """A failed warning-level check gives PARTIAL outside strict mode"""
        df = pl.DataFrame({"ticket_name": [None, "당일권"]})

        lenient = FactValidator().add_not_null_check("ticket_name", severity=ValidationSeverity.WARNING)
        strict = FactValidator(strict_mode=True).add_not_null_check(
            "ticket_name", severity=ValidationSeverity.WARNING
        )

        assert lenient.validate(df).status == ValidationStatus.PARTIAL
        assert strict.validate(df).status == ValidationStatus.FAILED

    def test_missing_column(self):
        """A missing column fails rather than raising"""
        df = pl.DataFrame({"other": [1]})

        result = FactValidator().add_not_null_check("customer_id").validate(df)

        assert result.status == ValidationStatus.FAILED

    def test_success_rate(self):
        df = pl.DataFrame({"customer_id": ["c1", None]})
        result = (
            FactValidator()
            .add_not_null_check("customer_id")
            .add_unique_check("customer_id")
            .validate(df)
        )
        assert result.success_rate == pytest.approx(50.0)


class TestPrebuiltValidators:
    """Tests for the per-table validators"""

    def test_visits(self):
        df = pl.DataFrame({
            "customer_id": ["c1", "c1"],
            "visit_date": [date(2024, 1, 1), date(2024, 1, 2)],
        })
        assert create_visits_validator().validate(df).status == ValidationStatus.PASSED

    def test_customers_chronology(self):
        """Last visit before first visit is rejected"""
        df = pl.DataFrame({
            "customer_id": ["c1", "c2"],
            "first_visit_date": [date(2024, 1, 5), date(2024, 1, 1)],
            "last_visit_date": [date(2024, 1, 1), None],
        })
        result = create_customers_validator().validate(df)

        assert result.status == ValidationStatus.FAILED
        assert [c.name for c in result.failed] == ["chronology_first_visit_date_last_visit_date"]

    def test_purchases_negative_amount(self):
        df = pl.DataFrame({
            "customer_id": ["c1"],
            "purchase_date": [date(2024, 1, 1)],
            "ticket_name": ["4주 정기권"],
            "amount": [-160000.0],
        })
        assert create_purchases_validator().validate(df).status == ValidationStatus.FAILED

    def test_daily_revenue(self):
        df = pl.DataFrame({
            "revenue_date": [date(2024, 1, 1), date(2024, 1, 2)],
            "total_revenue": [850000.0, 0.0],
        })
        assert create_daily_revenue_validator().validate(df).status == ValidationStatus.PASSED
