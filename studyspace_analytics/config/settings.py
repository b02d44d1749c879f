"""
Study-Space Segmentation & Impact Analytics
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety. Every analytic
threshold lives here so boundary behaviour can be probed from tests.
"""

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SegmentationSettings(BaseSettings):
    """Visit-segment classification thresholds"""

    model_config = SettingsConfigDict(env_prefix="SEGMENT_")

    window_days: int = Field(default=30, description="Length of the classification lookback window")
    churn_after_days: int = Field(default=29, description="Days since last visit beyond which a customer is churned")
    at_risk_after_days: int = Field(default=14, description="Days since last visit from which a customer is at risk")
    dormant_after_days: int = Field(default=29, description="Gap before range start that marks a customer as dormant")
    vip_min_visits: int = Field(default=20, description="Visit days in window for the VIP segment")
    regular_min_visits: int = Field(default=10, description="Visit days in window for the regular segment")
    revisit_min_visits: int = Field(default=2, description="Visit days in window that count as a revisit")


class MigrationSettings(BaseSettings):
    """Before/after windows around an intervention"""

    model_config = SettingsConfigDict(env_prefix="MIGRATION_")

    before_window_days: int = Field(default=30, description="Days observed before the event starts")
    after_window_days: int = Field(default=30, description="Days observed after the event ends")


class ForecastSettings(BaseSettings):
    """Expected-revenue forecast configuration"""

    model_config = SettingsConfigDict(env_prefix="FORECAST_")

    min_history_days: int = Field(default=30, description="Minimum daily observations before falling back")
    base_window_days: int = Field(default=90, description="Most recent observations averaged for the base rate")
    similar_min_history_days: int = Field(default=90, description="History a fallback branch must have")
    trend_window_days: int = Field(default=90, description="Block length for the recent-vs-prior trend")
    trend_min_days: int = Field(default=60, description="Minimum observations for the recent-vs-prior trend")
    factor_occurrence_limit: int = Field(default=5, description="Past occurrences inspected per factor type")

    # Similar-branch scoring
    region_weight: int = Field(default=3, description="Similarity score for a region match")
    size_weight: int = Field(default=2, description="Similarity score for a size-class match")
    audience_weight: int = Field(default=2, description="Similarity score for a target-audience match")

    # Confidence
    high_confidence_months: int = Field(default=12, description="Data months required for HIGH confidence")
    high_confidence_distinct_months: int = Field(default=10, description="Distinct calendar months for HIGH")
    medium_confidence_months: int = Field(default=6, description="Data months required for MEDIUM confidence")
    medium_confidence_distinct_months: int = Field(default=6, description="Distinct calendar months for MEDIUM")

    # Ticket mix
    ticket_mix_lookback_days: int = Field(default=90, description="Purchase lookback for the ticket-type mix")
    default_ticket_mix: Dict[str, float] = Field(
        default={"day": 0.30, "time": 0.35, "term": 0.25, "fixed": 0.10},
        description="Ticket-type revenue ratios used when a branch has no purchases",
    )


class StatisticsSettings(BaseSettings):
    """Inferential statistics configuration"""

    model_config = SettingsConfigDict(env_prefix="STATS_")

    significance_level: float = Field(default=0.05, description="Two-sided alpha for Welch's t-test")
    max_iterations: int = Field(default=100, description="Continued-fraction iteration cap")
    epsilon: float = Field(default=3e-7, description="Continued-fraction convergence tolerance")
    small_effect: float = Field(default=0.2, description="Cohen's d lower bound for SMALL")
    medium_effect: float = Field(default=0.5, description="Cohen's d lower bound for MEDIUM")
    large_effect: float = Field(default=0.8, description="Cohen's d lower bound for LARGE")


class AnalysisSettings(BaseSettings):
    """Event impact analysis configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_")

    max_workers: int = Field(default=4, description="Branches analysed concurrently")
    yoy_lookback_days: int = Field(default=365, description="History needed before an event for YOY comparison")
    returning_gap_days: int = Field(default=30, description="Gap before an event that makes a visitor 'returned'")


class DatabaseSettings(BaseSettings):
    """Relational DataStore configuration"""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(default="sqlite:///./studyspace_analytics.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL queries")
    pool_pre_ping: bool = Field(default=True, description="Verify connections before use")


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")
    log_file: Optional[str] = Field(default=None, description="Log file path")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="studyspace-analytics", description="Application name")
    app_env: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    forecast: ForecastSettings = Field(default_factory=ForecastSettings)
    statistics: StatisticsSettings = Field(default_factory=StatisticsSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
