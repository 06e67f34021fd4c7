"""Port interface for daemon clients.

Defines the protocol the readiness gate relies on and the error base that
marks a daemon as "not ready yet".
"""

from typing import Protocol


class ClientError(Exception):
    """Base exception for client-level failures (framing, server errors)."""

    pass


class LivenessClient(Protocol):
    """Protocol for a client connected to a daemon's client endpoint."""

    def ping(self) -> None:
        """Check the daemon answers a trivial request.

        Raises:
            OSError: If the transport fails
            ClientError: If the daemon answers with garbage or an error
        """
        ...

    def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        ...
