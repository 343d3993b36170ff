"""
Unit tests for replica set coordination.

Members are mocks; only the coordinator's sequencing, retries and cleanup
are exercised here.
"""

import threading
from unittest.mock import Mock, patch

import pytest
from pymongo.errors import AutoReconnect, OperationFailure

from mongotest.core.errors import (
    ClusterInitError,
    ConfigurationError,
    ServerStartupError,
)
from mongotest.core.reporter import PytestReporter
from mongotest.core.types import MongotestConfig, ReplicaSetConfig, TimeoutConfig
from mongotest.instances.replica_set import (
    ALREADY_INITIALIZED,
    INVALID_REPLICA_SET_CONFIG,
    ReplicaSet,
    new_replica_set,
)


def _member(port: int) -> Mock:
    member = Mock()
    member.server_id = f"mongod-{port}"
    member.url.return_value = f"127.0.0.1:{port}"
    return member


@pytest.fixture
def config() -> MongotestConfig:
    return MongotestConfig(
        timeouts=TimeoutConfig(
            start_attempt=1.0, server_stop=1.0, client_connect=1.0, primary_wait=0.2
        ),
        replica_set=ReplicaSetConfig(name="rs", init_attempts=3, init_retry_interval=0.01),
    )


@pytest.fixture
def members():
    return [_member(40001), _member(40002), _member(40003)]


class TestReplicaSetConfigDocument:
    """Test the replSetInitiate document."""

    def test_initiate_config(self, members, config):
        """Test every member is listed with the first one preferred."""
        replica_set = ReplicaSet(members, "rs0", config=config)

        assert replica_set.initiate_config() == {
            "_id": "rs0",
            "members": [
                {"_id": 0, "host": "127.0.0.1:40001", "priority": 2},
                {"_id": 1, "host": "127.0.0.1:40002", "priority": 1},
                {"_id": 2, "host": "127.0.0.1:40003", "priority": 1},
            ],
        }

    def test_addrs_in_member_order(self, members, config):
        replica_set = ReplicaSet(members, "rs", config=config)

        assert replica_set.addrs() == [
            "127.0.0.1:40001",
            "127.0.0.1:40002",
            "127.0.0.1:40003",
        ]
        assert replica_set.member_count == 3

    def test_needs_members(self, config):
        with pytest.raises(ConfigurationError):
            ReplicaSet([], "rs", config=config)


class TestInitiate:
    """Test replSetInitiate retries."""

    def test_retries_until_success(self, members, config, mock_reporter):
        """Test transient failures are retried."""
        client = members[0].client.return_value
        client.admin.command.side_effect = [
            OperationFailure("not ready", code=94),
            AutoReconnect("connection reset"),
            {"ok": 1},
        ]
        replica_set = ReplicaSet(members, "rs", reporter=mock_reporter, config=config)

        assert replica_set.initiate() == 3

        client.admin.command.assert_called_with(
            "replSetInitiate", replica_set.initiate_config()
        )
        client.close.assert_called_once()
        mock_reporter.fatal.assert_not_called()

    def test_already_initialized_is_success(self, members, config, mock_reporter):
        """Test AlreadyInitialized counts as done."""
        client = members[0].client.return_value
        client.admin.command.side_effect = OperationFailure(
            "already initialized", code=ALREADY_INITIALIZED
        )
        replica_set = ReplicaSet(members, "rs", reporter=mock_reporter, config=config)

        assert replica_set.initiate() == 1
        mock_reporter.fatal.assert_not_called()

    def test_gives_up_after_attempts(self, members, config, mock_reporter):
        """Test persistent failures are reported and raised."""
        client = members[0].client.return_value
        client.admin.command.side_effect = AutoReconnect("refused")
        replica_set = ReplicaSet(members, "rs", reporter=mock_reporter, config=config)

        with pytest.raises(ClusterInitError) as exc_info:
            replica_set.initiate()

        assert exc_info.value.attempts == 3
        assert client.admin.command.call_count == 3
        client.close.assert_called_once()
        mock_reporter.fatal.assert_called_once()

    def test_invalid_config_not_retried(self, members, config, mock_reporter):
        """Test an invalid configuration fails on the first attempt."""
        client = members[0].client.return_value
        client.admin.command.side_effect = OperationFailure(
            "bad config", code=INVALID_REPLICA_SET_CONFIG
        )
        replica_set = ReplicaSet(members, "rs", reporter=mock_reporter, config=config)

        with pytest.raises(ClusterInitError):
            replica_set.initiate()

        assert client.admin.command.call_count == 1


class TestWaitForPrimary:
    """Test waiting for an elected primary."""

    def test_returns_primary(self, members, config):
        client = members[0].client.return_value
        client.admin.command.side_effect = [
            {"ismaster": False},
            AutoReconnect("electing"),
            {"ismaster": True, "primary": "127.0.0.1:40001"},
        ]
        replica_set = ReplicaSet(members, "rs", config=config)

        assert replica_set.wait_for_primary() == "127.0.0.1:40001"
        client.admin.command.assert_called_with("isMaster")
        client.close.assert_called_once()

    def test_times_out(self, members, config, mock_reporter):
        client = members[0].client.return_value
        client.admin.command.return_value = {"ismaster": False}
        replica_set = ReplicaSet(members, "rs", reporter=mock_reporter, config=config)

        with pytest.raises(ClusterInitError):
            replica_set.wait_for_primary(timeout=0.05)

        mock_reporter.fatal.assert_called_once()


@patch("mongotest.instances.replica_set.new_started_server")
class TestCreate:
    """Test concurrent member startup and cleanup on failure."""

    def test_create_starts_initiates_and_waits(
        self, mock_new_server, members, config, mock_reporter
    ):
        """Test the happy path starts every member in replica set mode."""
        mock_new_server.side_effect = list(members)

        with patch.object(ReplicaSet, "initiate") as mock_initiate, patch.object(
            ReplicaSet, "wait_for_primary"
        ) as mock_wait:
            replica_set = ReplicaSet.create(3, mock_reporter, config=config, name="set0")

        assert sorted(replica_set.addrs()) == sorted(m.url() for m in members)
        assert replica_set.name == "set0"
        assert mock_new_server.call_count == 3
        for call in mock_new_server.call_args_list:
            assert call.kwargs["repl_set"] is True
            assert call.kwargs["repl_set_name"] == "set0"
            assert call.kwargs["label"] == "test_create_starts_initiates_and_waits"
        mock_initiate.assert_called_once_with()
        mock_wait.assert_called_once_with()
        for member in members:
            member.stop.assert_not_called()
            assert member.reporter is mock_reporter
        assert replica_set.reporter is mock_reporter
        mock_reporter.fatal.assert_not_called()

    def test_member_count_defaults_to_config(
        self, mock_new_server, config, mock_reporter
    ):
        config.replica_set.members = 2
        mock_new_server.side_effect = [_member(1), _member(2)]

        with patch.object(ReplicaSet, "initiate"):
            replica_set = ReplicaSet.create(
                reporter=mock_reporter, config=config, wait_for_primary=False
            )

        assert replica_set.member_count == 2
        assert replica_set.name == "rs"

    def test_partial_start_failure_stops_started_members(
        self, mock_new_server, config, mock_reporter
    ):
        """Test members that did start are stopped when another fails."""
        first, third = _member(1), _member(3)
        mock_new_server.side_effect = [first, ServerStartupError("boom"), third]

        with pytest.raises(ServerStartupError):
            ReplicaSet.create(3, mock_reporter, config=config)

        first.stop.assert_called_once()
        third.stop.assert_called_once()

    def test_initiate_failure_stops_all_members(
        self, mock_new_server, members, config, mock_reporter
    ):
        """Test a failed initiation tears the whole set down."""
        mock_new_server.side_effect = list(members)

        with patch.object(
            ReplicaSet, "initiate", side_effect=ClusterInitError("no quorum")
        ):
            with pytest.raises(ClusterInitError):
                ReplicaSet.create(3, mock_reporter, config=config)

        for member in members:
            member.stop.assert_called_once()

    def test_start_failure_reported_after_cleanup(
        self, mock_new_server, config, mock_reporter
    ):
        """Test a member failure is reported only once the others are stopped."""
        events = []
        started = _member(1)
        started.stop.side_effect = lambda: events.append("stop")
        mock_reporter.fatal.side_effect = lambda message: events.append("fatal")
        outcomes = [started, ServerStartupError("boom")]
        lock = threading.Lock()

        def start_member(reporter, **kwargs):
            with lock:
                outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                reporter.fatal(str(outcome))
                raise outcome
            return outcome

        mock_new_server.side_effect = start_member

        with pytest.raises(ServerStartupError):
            ReplicaSet.create(2, mock_reporter, config=config)

        assert events == ["stop", "fatal"]
        mock_reporter.fatal.assert_called_once_with("boom")

    def test_initiate_failure_reported_after_cleanup(
        self, mock_new_server, members, config, mock_reporter
    ):
        """Test an initiation failure is reported after every member stopped."""
        events = []
        for member in members:
            member.stop.side_effect = lambda: events.append("stop")
        mock_reporter.fatal.side_effect = lambda message: events.append("fatal")
        mock_new_server.side_effect = list(members)

        def failing_initiate(replica_set):
            replica_set.reporter.fatal("no quorum")
            raise ClusterInitError("no quorum")

        with patch.object(
            ReplicaSet, "initiate", autospec=True, side_effect=failing_initiate
        ):
            with pytest.raises(ClusterInitError):
                ReplicaSet.create(3, mock_reporter, config=config)

        assert events == ["stop", "stop", "stop", "fatal"]

    def test_pytest_reporter_fails_after_cleanup(self, mock_new_server, config):
        """Test a failing reporter still lets every started member stop first."""
        started = _member(1)
        outcomes = [started, ServerStartupError("boom")]
        lock = threading.Lock()

        def start_member(reporter, **kwargs):
            with lock:
                outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                reporter.fatal(str(outcome))
                raise outcome
            return outcome

        mock_new_server.side_effect = start_member

        with pytest.raises(pytest.fail.Exception, match="boom"):
            ReplicaSet.create(2, PytestReporter(), config=config)

        started.stop.assert_called_once()

    def test_invalid_member_count(self, mock_new_server, config, mock_reporter):
        """Test a member count below one is reported."""
        with pytest.raises(ConfigurationError):
            ReplicaSet.create(0, mock_reporter, config=config)

        mock_reporter.fatal.assert_called_once()
        mock_new_server.assert_not_called()

    def test_new_replica_set_shortcut(self, mock_new_server, config, mock_reporter):
        mock_new_server.side_effect = [_member(1)]

        with patch.object(ReplicaSet, "initiate"):
            replica_set = new_replica_set(
                1, mock_reporter, config=config, wait_for_primary=False
            )

        assert replica_set.addrs() == ["127.0.0.1:1"]


class TestStopAndClient:
    """Test teardown and the replica-set-aware client."""

    def test_stop_stops_every_member(self, members, config):
        with ReplicaSet(members, "rs", config=config):
            pass

        for member in members:
            member.stop.assert_called_once()

    def test_stop_is_bounded(self, members, config):
        """Test a hung member does not hold up stop beyond the timeout."""
        import threading

        release = threading.Event()
        members[1].stop.side_effect = lambda: release.wait()
        replica_set = ReplicaSet(members, "rs", config=config)

        try:
            replica_set.stop()
        finally:
            release.set()

        members[0].stop.assert_called_once()
        members[2].stop.assert_called_once()

    @patch("mongotest.instances.replica_set.MongoClient")
    def test_client(self, mock_client_cls, members, config):
        replica_set = ReplicaSet(members, "rs0", config=config)

        client = replica_set.client()

        assert client is mock_client_cls.return_value
        mock_client_cls.assert_called_once_with(
            replica_set.addrs(), replicaSet="rs0", serverSelectionTimeoutMS=1000
        )
