"""Core type definitions for the mongotest framework."""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class ServerState(Enum):
    """Lifecycle state of a single mongod instance."""

    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class TimeoutConfig(BaseModel):
    """Centralized timeout configuration, in seconds."""

    # One start attempt, from port allocation to readiness
    start_attempt: float = 10.0
    # Kill plus data directory removal
    server_stop: float = 15.0
    # Server selection when dialing a started instance
    client_connect: float = 5.0
    # Waiting for a replica set to elect a primary
    primary_wait: float = 30.0


class ReplicaSetConfig(BaseModel):
    """Replica set defaults."""

    name: str = "rs"
    members: int = 3
    init_attempts: int = 30
    init_retry_interval: float = 0.5


class MongotestConfig(BaseModel):
    """Main framework configuration."""

    mongod_binary: str = "mongod"
    enable_test_commands: bool = True
    verbose: bool = False
    temp_dir: Optional[Path] = None
    # None retries forever
    start_attempts: Optional[int] = 3
    log_level: str = "WARNING"
    # JSON lines log, one record per event
    log_file: Optional[Path] = None
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    replica_set: ReplicaSetConfig = Field(default_factory=ReplicaSetConfig)

    @model_validator(mode="after")
    def validate_config(self) -> "MongotestConfig":
        """Validate configuration - no side effects."""
        from .errors import ConfigurationError

        if self.start_attempts is not None and self.start_attempts < 1:
            raise ConfigurationError("start_attempts must be at least 1")

        for field_name, value in self.timeouts.model_dump().items():
            if value <= 0:
                raise ConfigurationError(f"Timeout '{field_name}' must be positive")

        if self.replica_set.members < 1:  # pylint: disable=no-member
            raise ConfigurationError("Replica set must have at least 1 member")
        if self.replica_set.init_attempts < 1:  # pylint: disable=no-member
            raise ConfigurationError("init_attempts must be at least 1")

        return self
