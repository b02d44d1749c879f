"""
Data Validation Module

Boundary checks for the analytics engine and rule-based quality checks for
fact tables before they are analysed.

Features:
- Error types raised at public boundaries (invalid windows)
- Null and uniqueness checks (including composite keys)
- Range checks on amounts and revenue
- Chronology checks on customer summaries
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class AnalyticsError(ValueError):
    """Base class for errors raised by the analytics engine"""


class InvalidWindowError(AnalyticsError):
    """A date window whose end precedes its start"""

    def __init__(self, start: date, end: date, name: str = "window"):
        self.start = start
        self.end = end
        self.name = name
        super().__init__(
            f"Invalid {name}: end {end.isoformat()} is before start {start.isoformat()}"
        )


def validate_window(start: date, end: date, name: str = "window") -> None:
    """
    Reject a window whose end precedes its start.

    Raises:
        InvalidWindowError: If end < start
    """
    if end < start:
        logger.warning(
            "Invalid window rejected",
            window=name,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        raise InvalidWindowError(start, end, name=name)


# =============================================================================
# FACT VALIDATION
# =============================================================================

class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Facts unusable as-is
    WARNING = "warning"  # Suspicious but analysable
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def failed(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


def _missing_columns(df: pl.DataFrame, columns: Sequence[str]) -> List[str]:
    return [c for c in columns if c not in df.columns]


class FactValidator:
    """
    Rule-based validator for fact frames.

    Checks report problems as a ValidationResult and never raise, so a
    caller decides whether dirty facts block an analysis.

    Example:
        validator = FactValidator()
        validator.add_not_null_check("customer_id")
        validator.add_unique_check(["customer_id", "visit_date"])
        result = validator.validate(visits_df)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Warnings fail the suite
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return ValidationCheck(
                    name=f"not_null_{column}",
                    passed=False,
                    severity=severity,
                    message=f"Column '{column}' not found",
                )

            null_count = df[column].null_count()
            total = len(df)
            passed = null_count == 0

            return ValidationCheck(
                name=f"not_null_{column}",
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: Union[str, Sequence[str]],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add uniqueness check on one column or a composite key"""
        keys = [columns] if isinstance(columns, str) else list(columns)
        name = f"unique_{'_'.join(keys)}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = _missing_columns(df, keys)
            if missing:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Columns {missing} not found",
                )

            total = len(df)
            unique_count = df.select(keys).unique().height
            duplicate_count = total - unique_count
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Key {keys} has {duplicate_count} duplicate rows" if not passed else f"Key {keys} is unique",
                details={"unique_count": unique_count, "duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check for values within specified range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return ValidationCheck(
                    name=f"range_{column}",
                    passed=False,
                    severity=severity,
                    message=f"Column '{column}' not found",
                )

            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)

            if not conditions:
                return ValidationCheck(
                    name=f"range_{column}",
                    passed=True,
                    severity=severity,
                    message="No range specified",
                )

            combined = conditions[0]
            for cond in conditions[1:]:
                combined = combined | cond

            out_of_range = df.filter(combined).height
            passed = out_of_range == 0

            return ValidationCheck(
                name=f"range_{column}",
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_non_negative_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check for values >= 0"""
        return self.add_range_check(column, min_value=0, severity=severity)

    def add_chronology_check(
        self,
        earlier: str,
        later: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check that `earlier` is not after `later` where both are set"""
        name = f"chronology_{earlier}_{later}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = _missing_columns(df, [earlier, later])
            if missing:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Columns {missing} not found",
                )

            violations = df.filter(
                pl.col(earlier).is_not_null()
                & pl.col(later).is_not_null()
                & (pl.col(earlier) > pl.col(later))
            ).height
            passed = violations == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{violations} rows have '{earlier}' after '{later}'" if not passed else "Chronology consistent",
                details={"violation_count": violations},
                failed_rows=violations,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on a fact frame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.utcnow()
        results = []

        logger.info("Running validation checks", checks=len(self._checks), rows=len(df))

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    "Validation failed",
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        validation_result = ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )

        logger.info(
            "Validation complete",
            status=status.value,
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return validation_result


# Pre-built validators for each fact table
def create_visits_validator() -> FactValidator:
    """One row per customer-day with ids and dates present"""
    return (
        FactValidator()
        .add_not_null_check("customer_id")
        .add_not_null_check("visit_date")
        .add_unique_check(["customer_id", "visit_date"])
    )


def create_customers_validator() -> FactValidator:
    """Unique customers whose last visit is not before their first"""
    return (
        FactValidator()
        .add_not_null_check("customer_id")
        .add_not_null_check("first_visit_date")
        .add_unique_check("customer_id")
        .add_chronology_check("first_visit_date", "last_visit_date")
    )


def create_purchases_validator() -> FactValidator:
    """Purchases with a customer, a date and a non-negative amount"""
    return (
        FactValidator()
        .add_not_null_check("customer_id")
        .add_not_null_check("purchase_date")
        .add_not_null_check("ticket_name", severity=ValidationSeverity.WARNING)
        .add_non_negative_check("amount")
    )


def create_daily_revenue_validator() -> FactValidator:
    """One non-negative revenue row per day"""
    return (
        FactValidator()
        .add_not_null_check("revenue_date")
        .add_unique_check("revenue_date")
        .add_non_negative_check("total_revenue")
    )
