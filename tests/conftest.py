"""Shared fixtures for mongotest's own tests."""

import shutil
import stat
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import Mock

import pytest

from mongotest.core.config import reset_config
from mongotest.core.types import MongotestConfig, ReplicaSetConfig, TimeoutConfig

# Prints the readiness marker split over two writes, records its locale,
# then idles. "$2" is the config file path inside the data directory.
READY_SCRIPT = """\
#!/bin/sh
echo "$LC_ALL" > "$(dirname "$2")/lc_all"
echo "$@" > "$(dirname "$2")/argv"
echo "[initandlisten] MongoDB starting"
printf 'waiting for conne'
sleep 0.1
echo 'ctions on port 1234'
exec sleep 60
"""

NEVER_READY_SCRIPT = """\
#!/bin/sh
echo "[initandlisten] MongoDB starting"
exec sleep 60
"""

EXITS_EARLY_SCRIPT = """\
#!/bin/sh
echo "[initandlisten] exception in initAndListen, terminating"
exit 3
"""

FAKE_MONGOD_SCRIPTS = {
    "ready": READY_SCRIPT,
    "never_ready": NEVER_READY_SCRIPT,
    "exits_early": EXITS_EARLY_SCRIPT,
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp(prefix="mongotest_test_"))
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def fake_mongod(temp_dir: Path) -> Callable[[str], Path]:
    """Factory writing an executable stand-in for mongod.

    ``behavior`` is one of ``ready``, ``never_ready`` or ``exits_early``.
    """

    def _write(behavior: str = "ready", name: str = "mongod") -> Path:
        script = temp_dir / "bin" / name
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(FAKE_MONGOD_SCRIPTS[behavior])
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write


@pytest.fixture
def make_config(temp_dir: Path) -> Callable[..., MongotestConfig]:
    """Factory for configs with short timeouts and data dirs under temp_dir."""

    def _make(binary: Path, **overrides) -> MongotestConfig:
        values = {
            "mongod_binary": str(binary),
            "temp_dir": temp_dir / "data",
            "start_attempts": 2,
            "timeouts": TimeoutConfig(
                start_attempt=5.0, server_stop=5.0, client_connect=1.0, primary_wait=1.0
            ),
            "replica_set": ReplicaSetConfig(init_attempts=3, init_retry_interval=0.01),
        }
        values.update(overrides)
        return MongotestConfig(**values)

    return _make


@pytest.fixture
def mock_reporter() -> Mock:
    """Reporter recording fatal calls without raising."""
    return Mock()


@pytest.fixture(autouse=True)
def reset_global_config() -> Generator[None, None, None]:
    """Drop any globally loaded configuration after each test."""
    yield
    reset_config()
