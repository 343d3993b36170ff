"""
mongotest: throwaway MongoDB servers for test suites.

Starts isolated mongod instances on free ports with private data
directories, waits until they accept connections, and removes every trace
of them on stop. Replica sets of several such instances are supported too.
"""

__version__ = "1.0.0"

from .core.errors import (
    MongotestError,
    AllocationError,
    FilesystemError,
    SpawnError,
    ReadinessTimeoutError,
    ClusterInitError,
)
from .core.reporter import Reporter, LoggingReporter, PytestReporter
from .core.types import MongotestConfig, TimeoutConfig, ReplicaSetConfig, ServerState
from .instances.server import MongoServer, new_started_server, new_repl_set_server
from .instances.replica_set import ReplicaSet, new_replica_set

__all__ = [
    "__version__",
    "MongotestError",
    "AllocationError",
    "FilesystemError",
    "SpawnError",
    "ReadinessTimeoutError",
    "ClusterInitError",
    "Reporter",
    "LoggingReporter",
    "PytestReporter",
    "MongotestConfig",
    "TimeoutConfig",
    "ReplicaSetConfig",
    "ServerState",
    "MongoServer",
    "new_started_server",
    "new_repl_set_server",
    "ReplicaSet",
    "new_replica_set",
]
