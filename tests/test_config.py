"""
Tests for settings validation and logging setup.
"""

import pytest
import structlog

from ambient_studio.config import Settings, settings
from ambient_studio.logging_config import configure_logging


class TestSettings:

    def test_defaults_are_valid(self):
        settings.validate()

    def test_mode_prefix(self):
        assert settings.mode_prefix == "/ambient-visual"

    @pytest.mark.parametrize("name", ["JOB_POLL_INTERVAL", "JOB_POLL_TIMEOUT", "DEBOUNCE_SECONDS"])
    def test_non_positive_interval_rejected(self, name):
        custom = Settings()
        setattr(custom, name, 0)

        with pytest.raises(ValueError, match=name):
            custom.validate()

    def test_retries_must_be_positive(self):
        custom = Settings()
        custom.HTTP_MAX_RETRIES = 0

        with pytest.raises(ValueError):
            custom.validate()


class TestLogging:

    def test_configure_json_output(self, capsys):
        configure_logging(level="debug", json_output=True)

        structlog.get_logger("test").info("stage_transition_started", stage=2)

        out = capsys.readouterr().out
        assert '"event": "stage_transition_started"' in out
        assert '"stage": 2' in out

    def test_level_filters_lower_events(self, capsys):
        configure_logging(level="warning", json_output=True)

        structlog.get_logger("test").info("job_progress")

        assert capsys.readouterr().out == ""
        configure_logging(level="info", json_output=False)
