"""Best-effort labels naming the test that asked for a server.

The label only ends up in data directory names to make leftovers easy to
attribute. It never affects behavior.
"""

import os
import re
import traceback
from pathlib import Path
from typing import List, Optional

NOT_FOUND_PREFIX = "TestNameNotFound"

_PACKAGE_DIR = str(Path(__file__).resolve().parent.parent) + os.sep
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def sanitize_label(label: str, max_length: int = 80) -> str:
    """Make a label safe to embed in a file name."""
    cleaned = _UNSAFE_CHARS.sub("_", label).strip("_.")
    return cleaned[:max_length] or NOT_FOUND_PREFIX


def label_from_pytest_env() -> Optional[str]:
    """Test name from PYTEST_CURRENT_TEST, e.g. ``tests/test_a.py::test_b (call)``."""
    current = os.environ.get("PYTEST_CURRENT_TEST")
    if not current:
        return None
    node_id = current.rsplit(" (", 1)[0]
    return node_id.split("::")[-1] or None


def _is_test_frame(frame: traceback.FrameSummary) -> bool:
    file_name = os.path.basename(frame.filename)
    is_test_file = file_name.startswith("test_") or file_name.endswith("_test.py")
    return is_test_file and frame.name.startswith("test")


def label_from_stack(stack: Optional[List[traceback.FrameSummary]] = None) -> str:
    """Nearest test function on the call stack, or a placeholder naming the caller."""
    frames = list(reversed(stack if stack is not None else traceback.extract_stack()))

    for frame in frames:
        if _is_test_frame(frame):
            return frame.name

    for frame in frames:
        if not os.path.realpath(frame.filename).startswith(_PACKAGE_DIR):
            module = os.path.splitext(os.path.basename(frame.filename))[0]
            return f"{NOT_FOUND_PREFIX}_{module}.{frame.name}"

    return NOT_FOUND_PREFIX


def current_test_label() -> str:
    """Label for the test running in this thread, sanitized for file names."""
    return sanitize_label(label_from_pytest_env() or label_from_stack())
