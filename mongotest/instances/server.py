"""Lifecycle controller for a single throwaway mongod instance."""

import subprocess
import sys
import threading
import uuid
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from pathlib import Path
from typing import Any, List, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from ..core.config import get_config
from ..core.errors import (
    MongotestError,
    ReadinessTimeoutError,
    ServerConnectionError,
    ServerStartupError,
)
from ..core.log import get_logger, log_context, log_server_event
from ..core.process import kill_process, locale_neutral_env, spawn_process
from ..core.reporter import DEFAULT_REPORTER, Reporter
from ..core.time import run_in_background, wait_for_all
from ..core.types import MongotestConfig, ServerState
from ..utils.filesystem import make_unique_dir, safe_remove
from ..utils.naming import current_test_label
from ..utils.ports import LOOPBACK, EphemeralPortAllocator, PortAllocator
from .config_renderer import ConfigParams, render_config
from .output_watcher import ReadinessWatcher

logger = get_logger(__name__)

DB_PATH_PREFIX = "mongotest-dbpath-"


class MongoServer:
    """One mongod process with its own port and data directory.

    ``start`` and ``stop`` are each meant to be called once, in that order.
    ``stop`` may be called while ``start`` is still waiting for readiness,
    e.g. from another thread that gave up on it.
    """

    def __init__(
        self,
        reporter: Optional[Reporter] = None,
        *,
        port: int = 0,
        repl_set: bool = False,
        repl_set_name: Optional[str] = None,
        stop_timeout: Optional[float] = None,
        config: Optional[MongotestConfig] = None,
        port_allocator: Optional[PortAllocator] = None,
        label: Optional[str] = None,
    ) -> None:
        if not isinstance(port, int):
            raise TypeError(f"Port must be an integer, got {type(port)}: {port}")

        self.config = config or get_config()
        self.reporter = reporter or DEFAULT_REPORTER
        self.port = port
        self.db_path: Optional[Path] = None
        self.config_path: Optional[Path] = None
        self.repl_set = repl_set
        self.repl_set_name = repl_set_name or self.config.replica_set.name
        self.stop_timeout = (
            stop_timeout if stop_timeout is not None else self.config.timeouts.server_stop
        )
        self.label = label
        self.server_id = f"mongod-{uuid.uuid4().hex[:8]}"

        self._port_allocator = port_allocator or EphemeralPortAllocator()
        self._process: Optional[subprocess.Popen] = None
        self._watcher: Optional[ReadinessWatcher] = None
        self._reader: Optional[threading.Thread] = None
        self._state = ServerState.UNSTARTED
        self._lock = threading.Lock()

    def __enter__(self) -> "MongoServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"MongoServer({self.server_id}, port={self.port}, state={self.state.value})"

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def is_running(self) -> bool:
        """Check whether the server became ready and its process is alive."""
        with self._lock:
            if self._state is not ServerState.RUNNING or self._process is None:
                return False
            return self._process.poll() is None

    def start(self) -> None:
        """Start mongod and return once it accepts connections.

        Every failure is reported through the reporter and then raised.
        """
        with self._lock:
            if self._state is not ServerState.UNSTARTED:
                raise ServerStartupError(
                    f"Server {self.server_id} cannot start from state {self._state.value}"
                )
            self._state = ServerState.STARTING

        with log_context(server_id=self.server_id):
            self._start()

    def _start(self) -> None:
        log_server_event(logger, "starting", server_id=self.server_id)
        try:
            self._assign_port()
            self._create_db_path()
            self.config_path = render_config(
                ConfigParams(
                    port=self.port,
                    db_path=self.db_path,
                    repl_set=self.repl_set,
                    repl_set_name=self.repl_set_name,
                )
            )
            self._spawn()
            self._wait_until_ready()
        except MongotestError as e:
            log_server_event(
                logger, "start_failed", server_id=self.server_id, error=str(e)
            )
            self._fail(e)

        with self._lock:
            if self._state is ServerState.STARTING:
                self._state = ServerState.RUNNING
        log_server_event(
            logger, "started", server_id=self.server_id, port=self.port, pid=self.pid
        )

    def stop(self) -> None:
        """Kill mongod and delete its data directory, giving up after ``stop_timeout``.

        Best effort: failures are logged, never raised.
        """
        with self._lock:
            if self._state is ServerState.STOPPED:
                logger.debug("Server %s already stopped", self.server_id)
                return
            self._state = ServerState.STOPPED
            process = self._process
            reader = self._reader
            db_path = self.db_path

        with log_context(server_id=self.server_id):
            self._teardown(process, reader, db_path)

    def _teardown(
        self,
        process: Optional[subprocess.Popen],
        reader: Optional[threading.Thread],
        db_path: Optional[Path],
    ) -> None:
        log_server_event(logger, "stopping", server_id=self.server_id)
        futures = []
        kill_future = None
        if process is not None:
            kill_future = run_in_background(
                _kill_and_release,
                process,
                reader,
                self.stop_timeout,
                name=f"kill-{self.server_id}",
            )
            futures.append(kill_future)
        if db_path is not None:
            futures.append(
                run_in_background(
                    _remove_db_path, db_path, kill_future, name=f"rmtree-{self.server_id}"
                )
            )

        if not wait_for_all(futures, self.stop_timeout):
            logger.warning(
                "Server %s teardown did not finish within %ss, abandoning it",
                self.server_id,
                self.stop_timeout,
            )
        for future in futures:
            if future.done() and future.exception() is not None:
                logger.debug(
                    "Teardown of %s failed: %s", self.server_id, future.exception()
                )
        log_server_event(logger, "stopped", server_id=self.server_id)

    def url(self) -> str:
        """Address suitable for a MongoDB client, e.g. ``127.0.0.1:27017``."""
        return f"{LOOPBACK}:{self.port}"

    def mongodb_uri(self) -> str:
        return f"mongodb://{self.url()}/?directConnection=true"

    def client(self, **kwargs: Any) -> MongoClient:
        """Dial the server and return a connected client.

        A dial failure is reported through the reporter and raised as
        ServerConnectionError.
        """
        timeout_ms = int(self.config.timeouts.client_connect * 1000)
        options = {"directConnection": True, "serverSelectionTimeoutMS": timeout_ms}
        options.update(kwargs)
        client: MongoClient = MongoClient(LOOPBACK, self.port, **options)
        try:
            client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            error = ServerConnectionError(
                f"Failed to connect to {self.url()}: {e}",
                details={"server_id": self.server_id},
            )
            self.reporter.fatal(str(error))
            raise error from e
        return client

    def command(self) -> List[str]:
        """Command line used to launch mongod."""
        command = [self.config.mongod_binary, "--config", str(self.config_path)]
        if self.config.enable_test_commands:
            command += ["--setParameter", "enableTestCommands=1"]
        return command

    def _assign_port(self) -> None:
        if self.port == 0:
            self.port = self._port_allocator.allocate_port()

    def _create_db_path(self) -> None:
        label = self.label or current_test_label()
        self.db_path = make_unique_dir(
            f"{DB_PATH_PREFIX}{label}_", base_dir=self.config.temp_dir
        )

    def _spawn(self) -> None:
        verbose = self.config.verbose
        sink = getattr(sys.stdout, "buffer", None) if verbose else None
        watcher = ReadinessWatcher(sink=sink)
        with self._lock:
            if self._state is ServerState.STOPPED:
                # stop() already ran and could not see the directory or process
                if self.db_path is not None:
                    safe_remove(self.db_path)
                raise ServerStartupError(
                    f"Server {self.server_id} was stopped before it was spawned"
                )
            self._process = spawn_process(
                self.command(), env=locale_neutral_env(), pass_stderr=verbose
            )
            self._watcher = watcher
            self._reader = watcher.watch(
                self._process.stdout, name=f"ReadinessWatcher-{self.server_id}"
            )

    def _wait_until_ready(self) -> None:
        if self._watcher.wait():
            return
        try:
            exit_code = self._process.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            exit_code = None
        raise ServerStartupError(
            f"mongod {self.server_id} closed its output before becoming ready"
            f" (exit code {exit_code})",
            details={"command": self.command(), "exit_code": exit_code},
        )

    def _fail(self, error: MongotestError) -> None:
        # A start that lost the race against stop() is abandoned, not failed.
        if self.state is not ServerState.STOPPED:
            self.reporter.fatal(str(error))
        raise error


def _kill_and_release(
    process: subprocess.Popen, reader: Optional[threading.Thread], timeout: float
) -> bool:
    """Kill the child, let the reader drain its output, then close the pipe."""
    killed = kill_process(process, timeout)
    if reader is not None:
        reader.join(timeout)
    if process.stdout is not None:
        process.stdout.close()
    return killed


def _remove_db_path(db_path: Path, kill_future=None) -> None:
    """Remove the data directory, retrying once the process is gone."""
    if safe_remove(db_path) or not db_path.exists():
        return
    if kill_future is not None:
        wait([kill_future])
    safe_remove(db_path)


def new_started_server(
    reporter: Optional[Reporter] = None,
    *,
    config: Optional[MongotestConfig] = None,
    **server_kwargs: Any,
) -> MongoServer:
    """Create and start a server, retrying on a fresh instance when a start hangs.

    Each attempt is bounded by ``timeouts.start_attempt``. An attempt that
    times out is abandoned: its start keeps running in the background while
    a best-effort stop tears down whatever it managed to create. Attempts
    are capped by ``start_attempts`` (None retries forever). Errors other
    than a timeout end the retry loop immediately.
    """
    config = config or get_config()
    reporter = reporter or DEFAULT_REPORTER
    server_kwargs.setdefault("label", current_test_label())
    timeout = config.timeouts.start_attempt
    max_attempts = config.start_attempts

    attempt = 0
    while max_attempts is None or attempt < max_attempts:
        attempt += 1
        server = MongoServer(reporter, config=config, **server_kwargs)
        future = run_in_background(server.start, name=f"start-{server.server_id}")
        try:
            future.result(timeout=timeout)
            return server
        except FutureTimeoutError:
            logger.warning(
                "Server %s not ready after %ss (attempt %d), retrying with a fresh instance",
                server.server_id,
                timeout,
                attempt,
            )
            run_in_background(server.stop, name=f"abandon-{server.server_id}")

    error = ReadinessTimeoutError(
        f"mongod did not become ready within {timeout}s in {attempt} attempt(s)",
        timeout=timeout,
        attempts=attempt,
    )
    reporter.fatal(str(error))
    raise error


def new_repl_set_server(
    reporter: Optional[Reporter] = None, **kwargs: Any
) -> MongoServer:
    """Start a single server with replica set mode enabled."""
    return new_started_server(reporter, repl_set=True, **kwargs)
