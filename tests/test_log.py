"""
Tests for the logging setup.
"""

import logging

import pytest

from nnkit import log as nnkit_log
from nnkit.log import PACKAGE_LOGGER_NAME, TRACE, get_logger, setup_logging


@pytest.fixture
def package_logger(monkeypatch):
    """Package logger restored to its untouched state afterwards."""
    monkeypatch.setattr(nnkit_log, "_handler", None)
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    logger.handlers = handlers
    logger.propagate = True
    logger.setLevel(level)


class TestSetupLogging:
    def test_handler_added_once(self, package_logger):
        count = len(package_logger.handlers)

        setup_logging(logging.DEBUG)
        setup_logging(logging.WARNING)

        assert len(package_logger.handlers) == count + 1
        assert package_logger.level == logging.WARNING
        assert not package_logger.propagate

    def test_level_by_name(self, package_logger):
        assert setup_logging("trace").level == TRACE
        assert logging.getLevelName(TRACE) == "TRACE"

    def test_unknown_level_name(self, package_logger):
        with pytest.raises(ValueError):
            setup_logging("loud")


class TestGetLogger:
    def test_injected_logger_wins(self):
        custom = logging.getLogger("custom")
        assert get_logger("nnkit.train", custom) is custom

    def test_module_logger(self):
        assert get_logger("nnkit.train").name == "nnkit.train"
