"""Blocking until a spawned daemon answers on its client endpoint.

A daemon is ready when the client factory returns a connected client whose
`ping()` succeeds. Refused connections, socket timeouts and client errors
all mean "not ready yet". Exiting early or being torn down meanwhile fail
fast instead of burning the whole deadline.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from electrsd.core.supervisor import DaemonHandle
from electrsd.domain.config import Timeouts
from electrsd.domain.exceptions import ProcessDied, TimedOut
from electrsd.domain.value_objects import ReadinessProgress, ReadinessState
from electrsd.ports.clients import ClientError, LivenessClient

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=LivenessClient)


def _check_alive(handle: DaemonHandle) -> None:
    if handle.is_torn_down:
        raise ProcessDied(
            f"{handle.name} was torn down while waiting for it to become ready",
            daemon=handle.name,
        )
    returncode = handle.returncode
    if returncode is not None:
        tail = handle.read_log_tail()
        message = f"{handle.name} exited with code {returncode} before becoming ready"
        if tail:
            message += f"\n--- last output ---\n{tail}"
        raise ProcessDied(message, returncode=returncode, output_tail=tail, daemon=handle.name)


def wait_ready(
    handle: DaemonHandle,
    client_factory: Callable[[], C],
    deadline: float | None = None,
    *,
    timeouts: Timeouts | None = None,
    on_progress: Callable[[ReadinessProgress], None] | None = None,
) -> C:
    """Poll until the daemon answers, then return the connected client.

    Args:
        handle: Spawned daemon
        client_factory: Connects and handshakes; may raise OSError or
                        ClientError while the daemon is starting
        deadline: Seconds to wait (default: timeouts.ready_deadline)
        timeouts: Interval, backoff and cap between attempts
        on_progress: Called with a snapshot before and after each attempt

    Returns:
        The client whose ping succeeded. The caller owns it.

    Raises:
        ProcessDied: If the process exits or is torn down first
        TimedOut: If the deadline elapses
    """
    timeouts = timeouts or Timeouts()
    deadline = timeouts.ready_deadline if deadline is None else deadline
    interval = timeouts.ready_interval
    start = time.monotonic()
    progress = ReadinessProgress()
    last_error: Exception | None = None

    def report(state: ReadinessState, attempted: bool = False) -> None:
        nonlocal progress
        progress = progress.advance(state, time.monotonic() - start, attempted=attempted)
        if on_progress is not None:
            on_progress(progress)

    report(ReadinessState.POLLING)
    while True:
        _check_alive(handle)

        client = None
        try:
            client = client_factory()
            client.ping()
        except (OSError, ClientError) as e:
            last_error = e
            if client is not None:
                client.close()
            report(ReadinessState.POLLING, attempted=True)
            logger.debug(f"{handle.name} not ready (attempt {progress.attempts}): {e}")
        else:
            report(ReadinessState.READY, attempted=True)
            logger.info(f"{handle.name} ready after {progress.elapsed:.2f}s")
            return client

        elapsed = time.monotonic() - start
        if elapsed >= deadline:
            _check_alive(handle)
            report(ReadinessState.TIMED_OUT)
            raise TimedOut(
                f"{handle.name} not ready after {elapsed:.1f}s "
                f"({progress.attempts} attempts, last error: {last_error})",
                elapsed=elapsed,
                attempts=progress.attempts,
                daemon=handle.name,
            )

        time.sleep(min(interval, max(0.0, deadline - elapsed)))
        interval = min(interval * timeouts.ready_backoff, timeouts.ready_max_interval)
