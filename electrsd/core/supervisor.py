"""Spawning daemons and owning their resources.

A DaemonHandle owns exactly one child process together with its working
directory, ports and log file. It is torn down exactly once, whichever comes
first of: leaving a `with` block, an explicit `teardown()`/`kill()`, garbage
collection of the handle, or interpreter exit.
"""

import logging
import os
import signal
import subprocess
import weakref
from pathlib import Path

from electrsd.core.port_allocator import PortAllocator, default_allocator
from electrsd.core.teardown import ProcessResources, remove_workdir, teardown_resources
from electrsd.domain.config import DaemonConfig, Timeouts
from electrsd.domain.exceptions import SpawnFailed, TeardownWarning
from electrsd.domain.value_objects import EndpointSet, TeardownState

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "daemon.log"
LOG_TAIL_BYTES = 4096


class DaemonHandle:
    """A running daemon process and the resources it holds."""

    def __init__(self, config: DaemonConfig, resources: ProcessResources):
        self.config = config
        self._resources = resources
        self._finalizer = weakref.finalize(self, teardown_resources, resources)

    @property
    def name(self) -> str:
        return self._resources.name

    @property
    def process(self) -> subprocess.Popen:
        return self._resources.process

    @property
    def pid(self) -> int:
        return self._resources.process.pid

    @property
    def endpoints(self) -> EndpointSet:
        return self.config.endpoints

    @property
    def workdir(self) -> Path:
        return self.config.workdir.path

    @property
    def log_file(self) -> Path | None:
        """Log file the daemon writes to, None when output is not captured."""
        if self._resources.log_stream is None:
            return None
        return self.workdir / LOG_FILE_NAME

    @property
    def state(self) -> TeardownState:
        return self._resources.state

    @property
    def is_torn_down(self) -> bool:
        """True once teardown has started."""
        return not self._finalizer.alive or self._resources.state != TeardownState.RUNNING

    @property
    def returncode(self) -> int | None:
        """Exit status if the process has exited, None while it runs."""
        return self._resources.process.poll()

    def send_signal(self, sig: int) -> None:
        """Deliver a signal to a running daemon. No-op after teardown."""
        if self.is_torn_down or self.returncode is not None:
            return
        self._resources.process.send_signal(sig)

    def read_log_tail(self, max_bytes: int = LOG_TAIL_BYTES) -> str:
        """Return the end of the daemon's log, empty if not captured."""
        log_file = self.log_file
        if log_file is None:
            return ""
        try:
            with log_file.open("rb") as f:
                f.seek(0, os.SEEK_END)
                size = f.tell()
                f.seek(max(0, size - max_bytes))
                return f.read().decode("utf-8", errors="replace").strip()
        except OSError:
            return ""

    def teardown(self) -> list[TeardownWarning]:
        """Stop the process and release every resource.

        Idempotent. A concurrent second caller blocks until the first has
        finished and then returns an empty list.

        Returns:
            Warnings for cleanup problems (also logged)
        """
        # Held across the finalizer call: a second caller must not see the
        # finalizer as spent while the first is still stopping the process.
        with self._resources.lock:
            warnings = self._finalizer()
        return warnings if warnings is not None else []

    kill = teardown

    def __enter__(self) -> "DaemonHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return f"DaemonHandle(name={self.name!r}, pid={self.pid}, state={self.state.value})"


def spawn(
    executable: Path,
    config: DaemonConfig,
    *,
    name: str | None = None,
    view_stdout: bool = False,
    allocator: PortAllocator | None = None,
    timeouts: Timeouts | None = None,
    graceful_signal: int | None = None,
) -> DaemonHandle:
    """Start a daemon and return immediately.

    On failure, the working directory and the ports in `config` are
    reclaimed before raising.

    Args:
        executable: Binary to run
        config: Resolved configuration (args, workdir, ports)
        name: Label used in logs and errors (default: config.daemon)
        view_stdout: Let the daemon write to the caller's stdout/stderr
                     instead of a log file in its working directory
        allocator: Allocator the ports were taken from
        timeouts: Timing policy for teardown
        graceful_signal: First shutdown signal (default: SIGINT for
                         persistent working directories, SIGTERM otherwise)

    Returns:
        Handle owning the process

    Raises:
        SpawnFailed: If the OS refuses to start the process
    """
    name = name or config.daemon
    allocator = allocator or default_allocator()
    timeouts = timeouts or Timeouts()
    workdir = config.workdir
    if graceful_signal is None:
        graceful_signal = signal.SIGINT if workdir.persistent else signal.SIGTERM

    cmd = [str(executable), *config.args]
    logger.debug(f"Spawning {name}: {' '.join(cmd)}")

    log_stream = None
    try:
        if not view_stdout:
            log_stream = (workdir.path / LOG_FILE_NAME).open("ab")
        process = subprocess.Popen(
            cmd,
            cwd=workdir.path,
            stdin=subprocess.DEVNULL,
            stdout=None if view_stdout else log_stream,
            stderr=None if view_stdout else subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        if log_stream is not None:
            log_stream.close()
        if not workdir.persistent:
            warning = remove_workdir(
                workdir.path, name, timeouts.cleanup_attempts, timeouts.cleanup_retry_delay
            )
            if warning is not None:
                logger.warning(f"{warning.daemon}: {warning.message}")
        allocator.release(config.endpoints.ports())
        raise SpawnFailed(
            f"Failed to start {name} ({executable}): {e}",
            hint="Check the executable exists and is built for this platform",
            daemon=name,
        ) from e

    logger.info(f"Spawned {name} (PID {process.pid})")
    resources = ProcessResources(
        name=name,
        process=process,
        workdir=workdir,
        ports=config.endpoints.ports(),
        allocator=allocator,
        timeouts=timeouts,
        graceful_signal=graceful_signal,
        log_stream=log_stream,
    )
    return DaemonHandle(config, resources)
