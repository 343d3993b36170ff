"""Failure reporting interface injected into server and replica set controllers.

A reporter receives the message of a failure that must abort the caller.
Test-framework integrations fail the running test; the default implementation
only logs, and the controller raises the typed error right after reporting.
"""

from typing import Protocol

from .log import get_logger

logger = get_logger(__name__)


class Reporter(Protocol):
    """Anything that can report a fatal failure."""

    def fatal(self, message: str) -> None:
        """Report a failure that aborts the current operation."""


class LoggingReporter:
    """Default reporter for non-test use: logs the failure at error level."""

    def __init__(self, log=None) -> None:
        self._logger = log or logger

    def fatal(self, message: str) -> None:
        self._logger.error("Fatal: %s", message)


class PytestReporter:
    """Reporter that fails the current pytest test."""

    def fatal(self, message: str) -> None:
        import pytest

        pytest.fail(message, pytrace=False)


DEFAULT_REPORTER = LoggingReporter()
