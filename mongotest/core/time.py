"""Bounded waiting on background work.

Work handed to ``run_in_background`` runs on a daemon thread and is never
cancelled. A waiter that gives up after its timeout simply stops waiting;
the work keeps running until it finishes on its own or the interpreter
exits. Daemon threads keep an abandoned, hung operation from blocking
interpreter shutdown.
"""

import threading
import time
from concurrent.futures import Future, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .log import get_logger

logger = get_logger(__name__)


@dataclass
class Deadline:
    """A fixed point in time that several bounded steps share."""

    timeout: float
    started: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        """Get remaining time until the deadline."""
        return max(0.0, self.started + self.timeout - time.monotonic())

    def is_expired(self) -> bool:
        return self.remaining() <= 0.0

    def elapsed(self) -> float:
        return time.monotonic() - self.started


def run_in_background(
    fn: Callable[..., Any], *args: Any, name: Optional[str] = None, **kwargs: Any
) -> Future:
    """Run ``fn`` on a daemon thread and return a future for its outcome."""
    future: Future = Future()

    def _runner() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:  # pylint: disable=broad-exception-caught
            # Test-framework failures derive from BaseException; hand them to the waiter.
            future.set_exception(e)
        else:
            future.set_result(result)

    thread = threading.Thread(target=_runner, name=name, daemon=True)
    thread.start()
    return future


def wait_for_all(futures: Iterable[Future], timeout: Optional[float]) -> bool:
    """Wait until every future is done or the timeout elapses.

    Returns True when all futures completed in time. Exceptions raised by
    the futures are left on them for the caller to inspect.
    """
    futures = list(futures)
    done, not_done = wait(futures, timeout=timeout)
    if not_done:
        logger.debug(
            "Gave up waiting on %d of %d background operations after %ss",
            len(not_done),
            len(futures),
            timeout,
        )
    return not not_done and len(done) == len(futures)

