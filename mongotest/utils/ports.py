"""Ephemeral port allocation for test isolation.

A port is obtained by binding to port 0 on the loopback interface and
reading back what the kernel assigned. The socket is closed before the port
is handed out so that mongod can bind it. Another process may grab the port
in between; that race is accepted for a test helper.
"""

import socket
from typing import Protocol

from ..core.errors import AllocationError
from ..core.log import get_logger

logger = get_logger(__name__)

LOOPBACK = "127.0.0.1"


class PortAllocator(Protocol):
    """Protocol for port allocation to enable dependency injection."""

    def allocate_port(self) -> int:
        """Allocate an available port."""


def allocate_port(host: str = LOOPBACK) -> int:
    """Return a TCP port that was free at the time of the call.

    Raises:
        AllocationError: If no ephemeral port could be obtained
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((host, 0))
            port = sock.getsockname()[1]
    except OSError as e:
        raise AllocationError(
            f"Could not obtain a free port on {host}: {e}", details={"host": host}
        ) from e
    logger.debug("Allocated ephemeral port %s", port)
    return port


class EphemeralPortAllocator:
    """PortAllocator backed by the kernel's ephemeral port range."""

    def __init__(self, host: str = LOOPBACK) -> None:
        self.host = host

    def allocate_port(self) -> int:
        return allocate_port(self.host)
