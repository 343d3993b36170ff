"""Server and replica set lifecycle management."""

from .server import MongoServer, new_started_server, new_repl_set_server
from .replica_set import ReplicaSet, new_replica_set

__all__ = [
    "MongoServer",
    "new_started_server",
    "new_repl_set_server",
    "ReplicaSet",
    "new_replica_set",
]
