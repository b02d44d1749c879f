"""
Data Quality Module
"""
from .validators import (
    AnalyticsError,
    FactValidator,
    InvalidWindowError,
    ValidationResult,
    validate_window,
)

__all__ = [
    "AnalyticsError",
    "FactValidator",
    "InvalidWindowError",
    "ValidationResult",
    "validate_window",
]
