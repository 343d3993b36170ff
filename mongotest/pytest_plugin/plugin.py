"""Pytest plugin providing mongod fixtures.

Loaded automatically through the ``pytest11`` entry point. Failures while
starting servers fail the requesting test through ``PytestReporter``.
"""

from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from ..core.config import load_config
from ..core.log import configure_logging, get_logger
from ..core.reporter import PytestReporter
from ..instances.replica_set import ReplicaSet
from ..instances.server import MongoServer, new_started_server

logger = get_logger(__name__)


def pytest_addoption(parser: Any) -> None:
    """Add mongotest command line options."""
    group = parser.getgroup("mongotest", "throwaway mongod servers")
    group.addoption(
        "--mongod-binary",
        action="store",
        default=None,
        help="mongod executable to launch (default: mongod on PATH)",
    )
    group.addoption(
        "--mongotest-verbose",
        action="store_true",
        default=False,
        help="Mirror mongod output to the terminal",
    )
    group.addoption(
        "--mongotest-members",
        action="store",
        type=int,
        default=None,
        help="Member count for the mongo_replica_set fixture",
    )
    group.addoption(
        "--mongotest-log-level",
        action="store",
        default=None,
        help="Framework log level (DEBUG, INFO, WARNING, ERROR)",
    )
    group.addoption(
        "--mongotest-log-file",
        action="store",
        default=None,
        help="Write structured JSON framework logs to this file",
    )


def _collect_overrides(config: pytest.Config) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    binary = config.getoption("--mongod-binary", default=None)
    if binary:
        overrides["mongod_binary"] = binary
    if config.getoption("--mongotest-verbose", default=False):
        overrides["verbose"] = True
    members = config.getoption("--mongotest-members", default=None)
    if members is not None:
        overrides["replica_set"] = {"members": members}
    log_level = config.getoption("--mongotest-log-level", default=None)
    if log_level:
        overrides["log_level"] = log_level
    log_file = config.getoption("--mongotest-log-file", default=None)
    if log_file:
        overrides["log_file"] = Path(log_file)
    return overrides


def pytest_configure(config: pytest.Config) -> None:
    """Apply command line overrides to the global configuration."""
    config.addinivalue_line(
        "markers", "mongotest: test needs a real mongod binary"
    )
    overrides = _collect_overrides(config)
    if overrides:
        mongotest_config = load_config(**overrides)
        configure_logging(
            level=mongotest_config.log_level,
            log_file=mongotest_config.log_file,
            enable_json=mongotest_config.log_file is not None,
            enable_console=True,
        )
        logger.debug("mongotest configured with overrides %s", overrides)


@pytest.fixture
def mongotest_reporter() -> PytestReporter:
    """Reporter failing the current test."""
    return PytestReporter()


@pytest.fixture
def mongo_server(mongotest_reporter: PytestReporter) -> Generator[MongoServer, None, None]:
    """A started mongod, stopped and removed after the test."""
    server = new_started_server(mongotest_reporter)
    try:
        yield server
    finally:
        server.stop()


@pytest.fixture
def mongo_client(mongo_server: MongoServer):
    """A pymongo client connected to ``mongo_server``."""
    client = mongo_server.client()
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def mongo_replica_set(
    mongotest_reporter: PytestReporter,
) -> Generator[ReplicaSet, None, None]:
    """An initiated replica set with an elected primary."""
    replica_set = ReplicaSet.create(reporter=mongotest_reporter)
    try:
        yield replica_set
    finally:
        replica_set.stop()
