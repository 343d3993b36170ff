"""Structured logging with JSON file output and rich terminal formatting."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from .log_formatters import StructuredFormatter, MongotestRichHandler, _log_context

NAMESPACE = "mongotest"


class Logger(Protocol):
    """Protocol for logger instances to enable dependency injection."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log error message."""


class LogManager:
    """Central logging configuration for all mongotest loggers.

    Loggers handed out by this manager do not propagate to the root logger,
    so the host test suite's logging setup is left untouched. Handlers added
    by ``configure`` are attached to loggers created before and after the
    call.
    """

    def __init__(self, namespace: str = NAMESPACE) -> None:
        self._namespace = namespace
        self._configured = False
        self._handlers: List[logging.Handler] = []
        self._loggers: Dict[str, logging.Logger] = {}
        self._lock = threading.RLock()

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        level: Union[int, str] = logging.INFO,
        log_file: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
        console_level: Optional[Union[int, str]] = None,
    ) -> None:
        """Configure handlers. Reconfiguring replaces the previous handlers."""
        with self._lock:
            if self._configured:
                self._clear_handlers()

            if enable_json and log_file:
                log_file = Path(log_file)
                log_file.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(log_file)
                json_handler.setFormatter(StructuredFormatter(include_context=True))
                json_handler.setLevel(level)
                self._handlers.append(json_handler)

            if enable_console:
                console_handler = MongotestRichHandler(
                    show_time=True, show_path=False, markup=False
                )
                console_handler.setLevel(console_level or level)
                self._handlers.append(console_handler)

            for logger in self._loggers.values():
                for handler in self._handlers:
                    logger.addHandler(handler)

            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """Get a namespaced logger instance."""
        with self._lock:
            if name == self._namespace or name.startswith(self._namespace + "."):
                full_name = name
            else:
                full_name = f"{self._namespace}.{name}"

            if full_name in self._loggers:
                return self._loggers[full_name]

            logger = logging.getLogger(full_name)
            logger.propagate = False
            logger.setLevel(logging.DEBUG)
            for handler in self._handlers:
                logger.addHandler(handler)

            self._loggers[full_name] = logger
            return logger

    def shutdown(self) -> None:
        """Detach and close all handlers."""
        with self._lock:
            self._clear_handlers()

    def _clear_handlers(self) -> None:
        for logger in self._loggers.values():
            for handler in self._handlers:
                logger.removeHandler(handler)
        for handler in self._handlers:
            try:
                handler.close()
            except (OSError, RuntimeError):
                pass  # Ignore handler close errors
        self._handlers = []
        self._configured = False


_log_manager = LogManager()


def configure_logging(**kwargs: Any) -> None:
    """Configure the global logging system."""
    _log_manager.configure(**kwargs)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return _log_manager.get_logger(name)


def shutdown_logging() -> None:
    """Shutdown the logging system."""
    _log_manager.shutdown()


def log_process_event(
    logger: Logger, event: str, pid: Optional[int] = None, **kwargs: Any
) -> None:
    """Log a process-related event."""
    extra: Dict[str, Any] = {"event_type": "process", "process_event": event}
    if pid is not None:
        extra["pid"] = pid
    extra.update(kwargs)
    logger.debug("Process %s %s", pid, event, extra=extra)


def log_server_event(
    logger: Logger, event: str, server_id: Optional[str] = None, **kwargs: Any
) -> None:
    """Log a server-related event."""
    extra: Dict[str, Any] = {"event_type": "server", "server_event": event}
    if server_id is not None:
        extra["server_id"] = server_id
    extra.update(kwargs)
    logger.info("Server %s %s", server_id, event, extra=extra)


def log_cluster_event(
    logger: Logger, event: str, set_name: Optional[str] = None, **kwargs: Any
) -> None:
    """Log a replica-set event."""
    extra: Dict[str, Any] = {"event_type": "cluster", "cluster_event": event}
    if set_name is not None:
        extra["set_name"] = set_name
    extra.update(kwargs)
    logger.info("Replica set %s %s", set_name, event, extra=extra)


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for current thread."""
    _log_context.set_context(**kwargs)


def get_log_context() -> Dict[str, Any]:
    """Get current logging context."""
    return _log_context.get_context()


def clear_log_context() -> None:
    """Clear current logging context."""
    _log_context.clear_context()


def log_context(**kwargs: Any) -> Any:
    """Context manager for temporary logging context."""
    return _log_context.context(**kwargs)
