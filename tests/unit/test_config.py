"""
Unit Tests - Configuration and Logging
"""
import logging

import pytest
import structlog
from pydantic import ValidationError

from studyspace_analytics.config import Settings
from studyspace_analytics.config.logging import configure_logging
from studyspace_analytics.config.settings import ForecastSettings, SegmentationSettings


class TestSettings:
    """Tests for Settings"""

    def test_defaults(self, test_settings):
        assert test_settings.app_env == "testing"
        assert test_settings.segmentation.window_days == 30
        assert test_settings.segmentation.churn_after_days == 29
        assert test_settings.forecast.base_window_days == 90
        assert test_settings.statistics.significance_level == 0.05
        assert test_settings.analysis.max_workers == 4

    def test_environment_flags(self):
        assert Settings(app_env="Production").is_production is True
        assert Settings(app_env="development").is_development is True

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(app_env="qa")

    def test_env_override(self, monkeypatch):
        """Thresholds are read from prefixed environment variables"""
        monkeypatch.setenv("SEGMENT_VIP_MIN_VISITS", "25")
        monkeypatch.setenv("FORECAST_MIN_HISTORY_DAYS", "45")

        assert SegmentationSettings().vip_min_visits == 25
        assert ForecastSettings().min_history_days == 45

    def test_default_ticket_mix_sums_to_one(self):
        assert sum(ForecastSettings().default_ticket_mix.values()) == pytest.approx(1.0)


class TestLogging:
    """Tests for configure_logging"""

    def test_configures_root_handler(self):
        configure_logging(log_level="DEBUG", log_format="console")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_json_renderer(self, capsys):
        configure_logging(log_level="INFO", log_format="json")
        structlog.get_logger("studyspace_analytics.test").info("Segment report built", customers=3)

        out = capsys.readouterr().out
        assert '"event": "Segment report built"' in out
        assert '"customers": 3' in out
