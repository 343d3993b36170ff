"""Child process spawning and forceful termination."""

import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from .errors import SpawnError
from .log import get_logger, log_process_event

logger = get_logger(__name__)


def locale_neutral_env(base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Copy of the environment with a fixed C collation."""
    env = dict(os.environ if base is None else base)
    env["LC_ALL"] = "C"
    return env


def spawn_process(
    command: List[str],
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[Path] = None,
    pass_stderr: bool = False,
) -> subprocess.Popen:
    """Start a child with its stdout piped as raw bytes.

    The child gets its own process group so it can be killed together with
    anything it forks. Stderr goes to our own stderr when ``pass_stderr`` is
    set and is discarded otherwise.

    Raises:
        SpawnError: If the process could not be launched
    """
    log_process_event(logger, "spawn", command=command)
    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=None if pass_stderr else subprocess.DEVNULL,
            bufsize=0,
            start_new_session=True,
        )
    except (OSError, subprocess.SubprocessError, ValueError) as e:
        log_process_event(logger, "spawn_failed", command=command, error=str(e))
        raise SpawnError(
            f"Failed to launch {command[0]}: {e}", command=command
        ) from e
    log_process_event(logger, "spawned", pid=process.pid)
    return process


def kill_process(process: subprocess.Popen, timeout: float = 5.0) -> bool:
    """Forcefully kill a child and its process group, then reap it.

    Returns True if the process is gone. Never raises for an already dead
    or inaccessible process.
    """
    pid = process.pid
    log_process_event(logger, "kill", pid=pid)
    try:
        if os.name != "nt":
            os.killpg(pid, signal.SIGKILL)
        else:
            process.kill()
    except (OSError, ProcessLookupError) as e:
        logger.debug("Could not send SIGKILL to process group %s: %s", pid, e)
        try:
            process.kill()
        except (OSError, ProcessLookupError):
            # Already dead
            pass

    try:
        process.wait(timeout=timeout)
        log_process_event(logger, "killed", pid=pid)
        return True
    except subprocess.TimeoutExpired:
        logger.warning("Process %s survived SIGKILL, killing its process tree", pid)
        return kill_process_tree(pid, signal.SIGKILL, timeout=timeout)


def get_child_pids(parent_pid: int) -> List[int]:
    """Get all descendant PIDs for a given parent PID."""
    try:
        parent = psutil.Process(parent_pid)
        return [child.pid for child in parent.children(recursive=True)]
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
        logger.debug("Could not get children for PID %s: %s", parent_pid, e)
    except (psutil.Error, OSError) as e:
        logger.warning("Error getting child PIDs for %s: %s", parent_pid, e)
    return []


def kill_process_tree(
    root_pid: int, signal_num: int = signal.SIGKILL, timeout: float = 5.0
) -> bool:
    """Signal a process and all its descendants and wait for them to vanish.

    Returns True if every process in the tree is gone within the timeout.
    """
    all_pids = [root_pid] + get_child_pids(root_pid)
    for pid in all_pids:
        try:
            os.kill(pid, signal_num)
        except (OSError, ProcessLookupError):
            logger.debug("PID %s already dead or inaccessible", pid)

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        alive = [pid for pid in all_pids if psutil.pid_exists(pid)]
        if not alive:
            return True
        time.sleep(0.1)

    logger.warning(
        "Processes in tree rooted at %s still alive after %ss", root_pid, timeout
    )
    return False
