"""Local TCP port allocation for daemon endpoints.

Ports are obtained by binding to port 0 and reading back what the OS picked.
The sockets are closed before the numbers are handed to the daemon, so
another process can still grab a port in between; callers treat an early
daemon exit as retryable for that reason. Within this process, an allocator
never hands out a port that is still held by a live fixture.
"""

import contextlib
import logging
import socket
import threading
from collections.abc import Iterable

from electrsd.domain.exceptions import PortsExhausted

logger = logging.getLogger(__name__)

LOCALHOST = "127.0.0.1"


class PortAllocator:
    """Hands out free local ports, never the same one twice while held.

    Pass an instance explicitly to fixtures that must share the reservation
    set; `default_allocator()` returns the one shared by the whole process.
    """

    def __init__(self, host: str = LOCALHOST, max_attempts: int = 20):
        """Initialize allocator.

        Args:
            host: Interface to probe ports on
            max_attempts: Rounds of probing before giving up
        """
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.host = host
        self.max_attempts = max_attempts
        self._lock = threading.Lock()
        self._reserved: set[int] = set()

    @property
    def reserved(self) -> frozenset[int]:
        """Ports currently handed out and not yet released."""
        with self._lock:
            return frozenset(self._reserved)

    def _probe(self, count: int) -> list[int]:
        """Bind `count` sockets at once and return the ports the OS assigned."""
        sockets: list[socket.socket] = []
        try:
            for _ in range(count):
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                sockets.append(sock)
                sock.bind((self.host, 0))
            return [sock.getsockname()[1] for sock in sockets]
        finally:
            for sock in sockets:
                with contextlib.suppress(OSError):
                    sock.close()

    def allocate(self, count: int) -> tuple[int, ...]:
        """Allocate `count` distinct free ports.

        Args:
            count: Number of ports needed

        Returns:
            Tuple of port numbers, reserved until released

        Raises:
            ValueError: If count is not positive
            PortsExhausted: If no free set was found within max_attempts
        """
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")

        for attempt in range(1, self.max_attempts + 1):
            with self._lock:
                try:
                    ports = self._probe(count)
                except OSError as e:
                    logger.debug(f"Port probe failed (attempt {attempt}): {e}")
                    continue

                if len(set(ports)) == count and self._reserved.isdisjoint(ports):
                    self._reserved.update(ports)
                    logger.debug(f"Allocated ports {ports}")
                    return tuple(ports)

            logger.debug(f"Port collision on attempt {attempt}: {ports}, retrying")

        raise PortsExhausted(
            f"Could not allocate {count} free port(s) after {self.max_attempts} attempts",
            hint="Too many fixtures running at once, or the ephemeral port range is exhausted",
        )

    def release(self, ports: Iterable[int]) -> None:
        """Return ports to the pool. Unknown ports are ignored."""
        with self._lock:
            self._reserved.difference_update(ports)


_default_allocator: PortAllocator | None = None
_default_allocator_lock = threading.Lock()


def default_allocator() -> PortAllocator:
    """Return the allocator shared by every fixture in this process."""
    global _default_allocator
    with _default_allocator_lock:
        if _default_allocator is None:
            _default_allocator = PortAllocator()
        return _default_allocator
