"""Tests for logging setup and per-module level overrides."""

import logging

import pytest

from learnflow.config import Settings
from learnflow.logging_config import (
    MODULE_LOGGERS,
    StructuredFormatter,
    module_levels,
    parse_level,
    setup_logging,
)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    module_state = {name: logging.getLogger(name).level for name in MODULE_LOGGERS.values()}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, module_level in module_state.items():
        logging.getLogger(name).setLevel(module_level)


class TestModuleLevels:
    def test_every_module_has_a_setting(self):
        fields = Settings.model_fields
        assert all(f"log_level_{key}" in fields for key in MODULE_LOGGERS)

    def test_overrides_only_set_modules(self):
        settings = Settings(_env_file=None, log_level_executor="debug", log_level_pipeline="WARNING")

        assert module_levels(settings) == {
            "learnflow.services.ai_executor": logging.DEBUG,
            "learnflow.services.pipeline": logging.WARNING,
        }

    def test_unknown_level_falls_back_to_root(self):
        settings = Settings(_env_file=None, log_level="ERROR", log_level_quota="chatty")
        assert module_levels(settings) == {"learnflow.services.request_log": logging.ERROR}

    def test_parse_level(self):
        assert parse_level("info", logging.ERROR) == logging.INFO
        assert parse_level(None, logging.ERROR) == logging.ERROR


class TestSetupLogging:
    def test_module_override_below_root(self, restore_logging):
        setup_logging(Settings(_env_file=None, log_level="WARNING", log_level_executor="DEBUG"))

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("learnflow.services.ai_executor").isEnabledFor(logging.DEBUG)
        assert not logging.getLogger("learnflow.services.pipeline").isEnabledFor(logging.INFO)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_single_handler(self, restore_logging):
        settings = Settings(_env_file=None)
        setup_logging(settings)
        setup_logging(settings)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, StructuredFormatter)


class TestStructuredFormatter:
    def test_shortens_logger_names(self):
        record = logging.LogRecord(
            "learnflow.services.recovery", logging.INFO, __file__, 1, "Resumed %s", ("c1",), None
        )
        line = StructuredFormatter().format(record)

        parts = [p.strip() for p in line.split(" | ")]
        assert parts[1:] == ["INFO", "recovery", "Resumed c1"]
