"""Rendering of the minimal mongod configuration file."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Optional

from ..core.errors import ConfigurationError, ConfigWriteError, FilesystemError
from ..core.log import get_logger
from ..utils.filesystem import atomic_write

logger = get_logger(__name__)

CONFIG_FILE_PREFIX = "config-"

_BASE_TEMPLATE = Template(
    """\
bind_ip          = 127.0.0.1
dbpath           = ${dbpath}
nohttpinterface  = true
nojournal        = true
noprealloc       = true
nounixsocket     = true
nssize           = 2
port             = ${port}
quiet            = true
smallfiles       = true
"""
)

_REPLICA_SET_TEMPLATE = Template(
    """\
oplogSize        = 1
replSet          = ${repl_set_name}
"""
)


@dataclass(frozen=True)
class ConfigParams:
    """Per-instance values substituted into the configuration template."""

    port: int
    db_path: Path
    repl_set: bool = False
    repl_set_name: str = "rs"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port for mongod config: {self.port}")
        if not Path(self.db_path).is_absolute():
            raise ConfigurationError(
                f"Data directory must be an absolute path, got {self.db_path}"
            )
        if self.repl_set and not self.repl_set_name:
            raise ConfigurationError("Replica set name must not be empty")


def render_config_text(params: ConfigParams) -> str:
    """Render the configuration file contents."""
    text = _BASE_TEMPLATE.substitute(dbpath=params.db_path, port=params.port)
    if params.repl_set:
        text += _REPLICA_SET_TEMPLATE.substitute(repl_set_name=params.repl_set_name)
    return text


def render_config(params: ConfigParams, directory: Optional[Path] = None) -> Path:
    """Write a uniquely named config file and return its path.

    The file goes into ``directory``, which defaults to the data directory.

    Raises:
        ConfigWriteError: On any filesystem failure
    """
    directory = Path(directory or params.db_path)
    text = render_config_text(params)
    try:
        fd, name = tempfile.mkstemp(prefix=CONFIG_FILE_PREFIX, dir=directory)
        os.close(fd)
        path = Path(name)
        atomic_write(path, text)
    except (OSError, FilesystemError) as e:
        raise ConfigWriteError(
            f"Failed to write mongod config into {directory}: {e}",
            details={"directory": str(directory)},
        ) from e
    logger.debug("Wrote mongod config %s", path)
    return path
