"""Filesystem helpers for per-instance data directories."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..core.errors import FilesystemError
from ..core.log import get_logger

logger = get_logger(__name__)


def make_unique_dir(prefix: str, base_dir: Optional[Path] = None) -> Path:
    """Create a fresh, uniquely named directory and return its absolute path.

    Raises:
        FilesystemError: If the directory could not be created
    """
    try:
        if base_dir is not None:
            Path(base_dir).mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=base_dir))
    except OSError as e:
        raise FilesystemError(
            f"Failed to create temporary directory with prefix {prefix!r}: {e}"
        ) from e
    logger.debug("Created directory %s", path)
    return path.resolve()


def atomic_write(path: Path, data: Union[str, bytes]) -> None:
    """Atomically write data to a file.

    Raises:
        FilesystemError: If the file could not be written
    """
    path = Path(path)
    is_binary = isinstance(data, bytes)
    tmp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb" if is_binary else "w",
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.tmp",
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        tmp_path.replace(path)
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass
        raise FilesystemError(f"Failed to atomically write to {path}: {e}") from e
    logger.debug("Atomically wrote %s bytes to %s", len(data), path)


def safe_remove(path: Path) -> bool:
    """Remove a file or directory tree, returning success status."""
    try:
        path = Path(path)
        if path.is_dir():
            shutil.rmtree(path)
            return True
        if path.exists():
            path.unlink()
            return True
        return False
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)
        return False
