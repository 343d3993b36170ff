"""Error hierarchy for the mongotest framework."""

from typing import Optional, Dict, Any


class MongotestError(Exception):
    """Base exception for all mongotest errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors
class ConfigurationError(MongotestError):
    """Error in framework configuration."""


# Network Errors
class NetworkError(MongotestError):
    """Network-related error."""


class AllocationError(NetworkError):
    """No free ephemeral port could be obtained."""


class ServerConnectionError(NetworkError):
    """Dialing a started server failed."""


# Filesystem and IO Errors
class FilesystemError(MongotestError):
    """Filesystem operation error."""


class ConfigWriteError(FilesystemError):
    """Server configuration file could not be written."""


# Process Errors
class ProcessError(MongotestError):
    """Base class for process-related errors."""


class SpawnError(ProcessError):
    """Server binary could not be launched."""

    def __init__(self, message: str, command: Optional[list] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.command = command or []


# Server Errors
class ServerError(MongotestError):
    """Base class for mongod server errors."""


class ServerStartupError(ServerError):
    """Error starting a mongod server."""


class ReadinessTimeoutError(ServerStartupError):
    """Readiness marker was never observed within the start window."""

    def __init__(self, message: str, timeout: float, attempts: int = 1,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout
        self.attempts = attempts


# Cluster Errors
class ClusterError(MongotestError):
    """Replica set operation error."""


class ClusterInitError(ClusterError):
    """Replica set initiation failed or never succeeded."""

    def __init__(self, message: str, attempts: int = 0,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.attempts = attempts
