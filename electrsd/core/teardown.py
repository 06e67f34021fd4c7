"""Guaranteed teardown of a spawned daemon.

Shutdown sequence:
1. Send the graceful signal (SIGTERM, or SIGINT for persistent data dirs so
   the daemon flushes) and wait up to grace_period
2. If still alive, SIGKILL and wait up to kill_wait
3. Reap the child so no zombie is left behind
4. Close the log file, remove a temporary working directory, release ports

Teardown never raises for cleanup problems. They are logged and returned as
TeardownWarning values so the caller's own exception, if any, is the one
the test reports.
"""

import contextlib
import logging
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING

from electrsd.core.port_allocator import PortAllocator
from electrsd.domain.config import Timeouts, WorkDir
from electrsd.domain.exceptions import CleanupIncomplete, TeardownWarning
from electrsd.domain.value_objects import TeardownState

if TYPE_CHECKING:
    from electrsd.core.supervisor import DaemonHandle

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ProcessResources:
    """Everything a spawned daemon owns that teardown has to give back.

    Kept separate from DaemonHandle so a finalizer can hold it without
    keeping the handle itself alive.
    """

    name: str
    process: subprocess.Popen
    workdir: WorkDir
    ports: tuple[int, ...]
    allocator: PortAllocator
    timeouts: Timeouts
    graceful_signal: int = signal.SIGTERM
    log_stream: IO[bytes] | None = None
    state: TeardownState = TeardownState.RUNNING
    warnings: list[TeardownWarning] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)


def _send_signal_and_wait(
    process: subprocess.Popen, sig: int, timeout_secs: float
) -> bool | None:
    """Send a signal to a process and wait for it to die.

    Args:
        process: Child process to signal
        sig: Signal to send
        timeout_secs: Seconds to wait for the process to die

    Returns:
        True if the process died, False if still alive after timeout,
        None if the signal could not be delivered
    """
    try:
        if sig == getattr(signal, "SIGKILL", None):
            process.kill()
        else:
            process.send_signal(sig)
    except OSError:
        return None

    try:
        process.wait(timeout=timeout_secs)
    except subprocess.TimeoutExpired:
        return False
    return True


def stop_process(resources: ProcessResources) -> None:
    """Stop and reap the process, escalating to SIGKILL if needed."""
    process = resources.process
    name = resources.name
    timeouts = resources.timeouts

    if process.poll() is not None:
        logger.debug(f"{name} (PID {process.pid}) already exited with {process.returncode}")
        resources.state = TeardownState.EXITED
        return

    sig_name = signal.Signals(resources.graceful_signal).name
    logger.info(f"Stopping {name} (PID {process.pid}) with {sig_name}...")
    resources.state = TeardownState.SIGNAL_SENT
    result = _send_signal_and_wait(process, resources.graceful_signal, timeouts.grace_period)

    if result is True:
        logger.info(f"{name} stopped gracefully")
    elif result is None and process.poll() is not None:
        logger.info(f"{name} died before it could be signalled")
    else:
        logger.warning(f"{name} did not stop within {timeouts.grace_period}s, sending SIGKILL...")
        resources.state = TeardownState.KILL_SENT
        if _send_signal_and_wait(process, signal.SIGKILL, timeouts.kill_wait) is not True:
            logger.error(f"{name} (PID {process.pid}) survived SIGKILL, blocking on reap")

    # Popen.wait reaps the child; without a timeout it cannot leave a zombie.
    process.wait()
    resources.state = TeardownState.EXITED


def remove_workdir(
    path: Path, name: str, attempts: int, retry_delay: float
) -> CleanupIncomplete | None:
    """Remove a working directory, retrying while files still move around.

    Returns:
        None on success, a CleanupIncomplete warning otherwise
    """
    last_error: OSError | None = None
    for attempt in range(1, attempts + 1):
        try:
            shutil.rmtree(path)
            return None
        except FileNotFoundError:
            return None
        except OSError as e:
            last_error = e
            logger.debug(f"Removing {path} failed (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                time.sleep(retry_delay)
    return CleanupIncomplete(
        daemon=name,
        message=f"Could not remove {path} after {attempts} attempts: {last_error}",
        path=path,
    )


def teardown_resources(resources: ProcessResources) -> list[TeardownWarning]:
    """Release everything in `resources`. Only the first call has an effect.

    Returns:
        Warnings for problems that did not stop teardown
    """
    with resources.lock:
        if resources.state == TeardownState.CLEANED:
            return []

        warnings: list[TeardownWarning] = []
        try:
            stop_process(resources)
        except OSError as e:
            warnings.append(TeardownWarning(resources.name, f"Stopping process failed: {e}"))

        if resources.log_stream is not None:
            with contextlib.suppress(OSError):
                resources.log_stream.close()

        if not resources.workdir.persistent:
            warning = remove_workdir(
                resources.workdir.path,
                resources.name,
                resources.timeouts.cleanup_attempts,
                resources.timeouts.cleanup_retry_delay,
            )
            if warning is not None:
                warnings.append(warning)

        resources.allocator.release(resources.ports)
        resources.state = TeardownState.CLEANED
        resources.warnings.extend(warnings)

        for warning in warnings:
            logger.warning(f"{warning.daemon}: {warning.message}")
        return warnings


def teardown(handle: "DaemonHandle") -> list[TeardownWarning]:
    """Tear a handle down. Equivalent to `handle.teardown()`."""
    return handle.teardown()
