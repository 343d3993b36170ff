"""Replica sets built from throwaway mongod instances."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ..core.config import get_config
from ..core.errors import ClusterInitError, ConfigurationError, MongotestError
from ..core.log import get_logger, log_cluster_event
from ..core.reporter import DEFAULT_REPORTER, Reporter
from ..core.time import Deadline, run_in_background, wait_for_all
from ..core.types import MongotestConfig
from ..utils.naming import current_test_label
from .server import MongoServer, new_started_server

logger = get_logger(__name__)

# Server error codes for replSetInitiate
ALREADY_INITIALIZED = 23
INVALID_REPLICA_SET_CONFIG = 93


class ReplicaSet:
    """An initiated replica set whose first member is the preferred primary.

    Use ``ReplicaSet.create`` to get a running set; the constructor only
    wraps members that are already started.
    """

    def __init__(
        self,
        members: List[MongoServer],
        name: str,
        reporter: Optional[Reporter] = None,
        config: Optional[MongotestConfig] = None,
    ) -> None:
        if not members:
            raise ConfigurationError("A replica set needs at least one member")
        self.members = list(members)
        self.name = name
        self.reporter = reporter or DEFAULT_REPORTER
        self.config = config or get_config()

    @classmethod
    def create(
        cls,
        member_count: Optional[int] = None,
        reporter: Optional[Reporter] = None,
        *,
        config: Optional[MongotestConfig] = None,
        name: Optional[str] = None,
        wait_for_primary: bool = True,
    ) -> "ReplicaSet":
        """Start ``member_count`` servers concurrently and initiate the set.

        If any member fails to start, or initiation fails, every member that
        did start is stopped before the failure is reported and re-raised.
        """
        config = config or get_config()
        reporter = reporter or DEFAULT_REPORTER
        count = member_count if member_count is not None else config.replica_set.members
        name = name or config.replica_set.name
        if count < 1:
            error = ConfigurationError(f"Replica set needs at least 1 member, got {count}")
            reporter.fatal(str(error))
            raise error

        log_cluster_event(logger, "starting", set_name=name, members=count)
        pending = _DeferredReporter()
        try:
            members = cls._start_members(count, name, pending, config)
        except BaseException:
            pending.flush(reporter)
            raise

        replica_set = cls(members, name, reporter=pending, config=config)
        try:
            replica_set.initiate()
            if wait_for_primary:
                replica_set.wait_for_primary()
        except BaseException:
            replica_set.stop()
            pending.flush(reporter)
            raise

        replica_set.reporter = reporter
        for member in members:
            member.reporter = reporter
        log_cluster_event(logger, "started", set_name=name, addrs=replica_set.addrs())
        return replica_set

    @staticmethod
    def _start_members(
        count: int, name: str, reporter: Reporter, config: MongotestConfig
    ) -> List[MongoServer]:
        label = current_test_label()
        with ThreadPoolExecutor(
            max_workers=count, thread_name_prefix="ReplicaSetStart"
        ) as executor:
            futures = [
                executor.submit(
                    new_started_server,
                    reporter,
                    config=config,
                    repl_set=True,
                    repl_set_name=name,
                    label=label,
                )
                for _ in range(count)
            ]

        members: List[MongoServer] = []
        failure: Optional[BaseException] = None
        for future in futures:
            error = future.exception()
            if error is None:
                members.append(future.result())
            elif failure is None:
                failure = error

        if failure is not None:
            log_cluster_event(
                logger,
                "start_failed",
                set_name=name,
                started=len(members),
                error=str(failure),
            )
            _stop_all(members, config.timeouts.server_stop)
            raise failure
        return members

    def __enter__(self) -> "ReplicaSet":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def member_count(self) -> int:
        return len(self.members)

    def addrs(self) -> List[str]:
        """Addresses of all members, first member first."""
        return [member.url() for member in self.members]

    def initiate_config(self) -> Dict[str, Any]:
        """Replica set configuration document listing every member."""
        return {
            "_id": self.name,
            "members": [
                {"_id": index, "host": member.url(), "priority": 2 if index == 0 else 1}
                for index, member in enumerate(self.members)
            ],
        }

    def initiate(self) -> int:
        """Run replSetInitiate on the first member, retrying while it is not ready.

        Returns the number of attempts used.

        Raises:
            ClusterInitError: If initiation never succeeds within the configured attempts
        """
        attempts = self.config.replica_set.init_attempts
        interval = self.config.replica_set.init_retry_interval
        initiate_config = self.initiate_config()
        last_error: Optional[Exception] = None

        client = self.members[0].client()
        try:
            for attempt in range(1, attempts + 1):
                try:
                    client.admin.command("replSetInitiate", initiate_config)
                    log_cluster_event(
                        logger, "initiated", set_name=self.name, attempts=attempt
                    )
                    return attempt
                except OperationFailure as e:
                    if e.code == ALREADY_INITIALIZED:
                        logger.debug("Replica set %s already initialized", self.name)
                        return attempt
                    last_error = e
                    if e.code == INVALID_REPLICA_SET_CONFIG:
                        break
                except ConnectionFailure as e:
                    last_error = e
                logger.debug(
                    "replSetInitiate attempt %d/%d for %s failed: %s",
                    attempt,
                    attempts,
                    self.name,
                    last_error,
                )
                time.sleep(interval)
        finally:
            client.close()

        self._fail(
            ClusterInitError(
                f"Failed to initiate replica set {self.name}: {last_error}",
                attempts=attempts,
                details={"config": initiate_config},
            )
        )

    def wait_for_primary(self, timeout: Optional[float] = None) -> str:
        """Block until a primary is elected and return its address.

        Raises:
            ClusterInitError: If no primary is reported within the timeout
        """
        deadline = Deadline(
            timeout if timeout is not None else self.config.timeouts.primary_wait
        )
        interval = self.config.replica_set.init_retry_interval
        client = self.members[0].client()
        try:
            while not deadline.is_expired():
                try:
                    status = client.admin.command("isMaster")
                    primary = status.get("primary")
                    if primary:
                        log_cluster_event(
                            logger, "primary_elected", set_name=self.name, primary=primary
                        )
                        return primary
                except PyMongoError as e:
                    logger.debug("Primary check for %s failed: %s", self.name, e)
                time.sleep(interval)
        finally:
            client.close()

        self._fail(
            ClusterInitError(
                f"Replica set {self.name} elected no primary within {deadline.timeout}s"
            )
        )

    def client(self, **kwargs: Any) -> MongoClient:
        """Replica-set-aware client over all member addresses."""
        timeout_ms = int(self.config.timeouts.client_connect * 1000)
        options = {"replicaSet": self.name, "serverSelectionTimeoutMS": timeout_ms}
        options.update(kwargs)
        return MongoClient(self.addrs(), **options)

    def stop(self) -> None:
        """Stop every member concurrently. Best effort, never raises."""
        log_cluster_event(logger, "stopping", set_name=self.name)
        _stop_all(self.members, self.config.timeouts.server_stop)
        log_cluster_event(logger, "stopped", set_name=self.name)

    def _fail(self, error: MongotestError) -> None:
        log_cluster_event(logger, "init_failed", set_name=self.name, error=str(error))
        self.reporter.fatal(str(error))
        raise error


class _DeferredReporter:
    """Collects fatal messages so they can be reported once cleanup is done."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self._lock = threading.Lock()

    def fatal(self, message: str) -> None:
        with self._lock:
            self.messages.append(message)

    def flush(self, reporter: Reporter) -> None:
        with self._lock:
            messages, self.messages = self.messages, []
        for message in messages:
            reporter.fatal(message)


def _stop_all(members: List[MongoServer], timeout: float) -> None:
    futures = [
        run_in_background(member.stop, name=f"stop-{member.server_id}")
        for member in members
    ]
    if not wait_for_all(futures, timeout):
        logger.warning("Not every replica set member stopped within %ss", timeout)


def new_replica_set(
    member_count: Optional[int] = None, reporter: Optional[Reporter] = None, **kwargs: Any
) -> ReplicaSet:
    """Create a fully started and initiated replica set."""
    return ReplicaSet.create(member_count, reporter, **kwargs)
