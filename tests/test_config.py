"""
Test cases for configuration and logging setup.
"""

import pytest
from pydantic import ValidationError

from utilities.config import CatalogConfig
from utilities.logger import FanoutLogger, setup_logging


class TestCatalogConfig:

    def test_defaults(self):
        config = CatalogConfig(_env_file=None)

        assert config.loan_period_days == 30
        assert config.intents_collection == "fanout_intents"
        assert config.get_collection_names()["jobs"] == "propagation_jobs"
        assert config.is_production() is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOAN_PERIOD_DAYS", "14")
        monkeypatch.setenv("BOOKS_COLLECTION", "catalogue_books")

        config = CatalogConfig(_env_file=None)

        assert config.loan_period_days == 14
        assert config.get_collection_names()["books"] == "catalogue_books"

    @pytest.mark.parametrize("field, value", [
        ("loan_period_days", 0),
        ("cache_max_entries", 0),
        ("overdue_sweep_hour", 24),
        ("overdue_sweep_minute", -1),
        ("recovery_interval_minutes", 0),
        ("intent_grace_seconds", -5),
        ("log_level", "LOUD"),
        ("log_format", "xml"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            CatalogConfig(_env_file=None, **{field: value})

    def test_normalizes_log_settings(self):
        config = CatalogConfig(_env_file=None, log_level="debug", log_format="CONSOLE", log_file=None)

        assert config.log_level == "DEBUG"
        assert config.log_format == "console"
        assert config.get_log_file_path() is None


class TestLogging:

    def test_setup_logging_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "catalog.log"

        setup_logging(log_level="INFO", log_format="json", log_file=log_file)

        assert log_file.exists()

    def test_fanout_logger_context(self):
        fanout_log = FanoutLogger("test").bind_context(operation_id="op-1")
        assert fanout_log.context == {"operation_id": "op-1"}

        fanout_log.log_dependent_write("authors", "put_book", "a1", affected=1)

        assert fanout_log.clear_context().context == {}
