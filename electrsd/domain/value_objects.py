"""Domain value objects with validation.

Value objects that provide validation at construction time,
ensuring invalid states are unrepresentable.
"""

from dataclasses import dataclass, replace
from enum import Enum

MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True)
class EndpointSet:
    """Ports owned by one daemon.

    Only the ports a daemon listens on itself are recorded here; addresses of
    other daemons it talks to are passed separately.

    Attributes:
        rpc: JSON-RPC port.
        p2p: Peer-to-peer port.
        client: Client-protocol port (Electrum for electrs).
        monitoring: Prometheus monitoring port (electrs only).
        http: Esplora HTTP port (electrs only, optional).

    Raises:
        ValueError: If a port is out of range or two ports are equal.
    """

    rpc: int | None = None
    p2p: int | None = None
    client: int | None = None
    monitoring: int | None = None
    http: int | None = None

    def __post_init__(self) -> None:
        """Validate port ranges and uniqueness."""
        ports = self.ports()
        for port in ports:
            if not MIN_PORT <= port <= MAX_PORT:
                raise ValueError(f"Port out of range: {port}")
        if len(set(ports)) != len(ports):
            raise ValueError(f"Duplicate port in endpoint set: {ports}")

    def ports(self) -> tuple[int, ...]:
        """Return all assigned port numbers in field order."""
        values = (self.rpc, self.p2p, self.client, self.monitoring, self.http)
        return tuple(port for port in values if port is not None)


class ReadinessState(Enum):
    """Phase of a readiness wait."""

    NOT_STARTED = "not_started"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ReadinessProgress:
    """Snapshot of a readiness wait, passed to progress callbacks."""

    state: ReadinessState = ReadinessState.NOT_STARTED
    attempts: int = 0
    elapsed: float = 0.0

    def advance(
        self, state: ReadinessState, elapsed: float, attempted: bool = False
    ) -> "ReadinessProgress":
        """Return the next snapshot."""
        attempts = self.attempts + 1 if attempted else self.attempts
        return replace(self, state=state, attempts=attempts, elapsed=elapsed)


class TeardownState(Enum):
    """Teardown progress of a daemon handle.

    RUNNING -> SIGNAL_SENT -> {EXITED, KILL_SENT -> EXITED} -> CLEANED
    """

    RUNNING = "running"
    SIGNAL_SENT = "signal_sent"
    KILL_SENT = "kill_sent"
    EXITED = "exited"
    CLEANED = "cleaned"
