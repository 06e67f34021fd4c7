"""Composing locate, configure, spawn and readiness into one launch.

A port handed out by the allocator can still be taken by an unrelated
process before the daemon binds it. The daemon then exits right away, so an
early exit is retried with freshly allocated ports a bounded number of times.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Generic, TypeVar

from electrsd.core.config_synth import create_workdir
from electrsd.core.port_allocator import PortAllocator
from electrsd.core.readiness import wait_ready
from electrsd.core.supervisor import DaemonHandle, spawn
from electrsd.core.teardown import remove_workdir
from electrsd.domain.config import DaemonConfig, Timeouts, WorkDir
from electrsd.domain.exceptions import ProcessDied
from electrsd.ports.clients import LivenessClient

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=LivenessClient)


class Launched(Generic[C]):
    """A ready daemon: its handle and the client that proved readiness."""

    def __init__(self, handle: DaemonHandle, client: C):
        self.handle = handle
        self.client = client


def launch(
    executable: Path,
    *,
    name: str,
    port_count: int,
    build_config: Callable[[tuple[int, ...], WorkDir], DaemonConfig],
    client_factory: Callable[[DaemonHandle], Callable[[], C]],
    allocator: PortAllocator,
    timeouts: Timeouts,
    tmpdir: Path | None = None,
    staticdir: Path | None = None,
    view_stdout: bool = False,
    attempts: int = 3,
) -> Launched[C]:
    """Start a daemon and block until it is ready.

    Args:
        executable: Binary to run
        name: Daemon label for logs and errors
        port_count: Number of ports to allocate
        build_config: Writes the daemon's files for the given ports and
                      working directory, returning its DaemonConfig
        client_factory: Given the handle, returns the factory wait_ready polls
        allocator: Port allocator
        timeouts: Timing policy
        tmpdir: Parent for the temporary working directory
        staticdir: Persistent working directory
        view_stdout: Show daemon output instead of logging it to a file
        attempts: Extra tries after an early exit

    Returns:
        The handle and its connected client

    Raises:
        ElectrsdError: Any locate, config, spawn or readiness error once
                       retries are exhausted
    """
    remaining = attempts
    while True:
        ports = allocator.allocate(port_count)
        try:
            workdir = create_workdir(tmpdir, prefix=f"{name}-", staticdir=staticdir)
        except BaseException:
            allocator.release(ports)
            raise

        try:
            config = build_config(ports, workdir)
        except BaseException:
            allocator.release(ports)
            if not workdir.persistent:
                warning = remove_workdir(
                    workdir.path, name, timeouts.cleanup_attempts, timeouts.cleanup_retry_delay
                )
                if warning is not None:
                    logger.warning(f"{warning.daemon}: {warning.message}")
            raise

        handle = spawn(
            executable,
            config,
            name=name,
            view_stdout=view_stdout,
            allocator=allocator,
            timeouts=timeouts,
        )
        try:
            client = wait_ready(handle, client_factory(handle), timeouts=timeouts)
        except ProcessDied as e:
            handle.teardown()
            if remaining <= 0 or e.returncode is None:
                raise
            remaining -= 1
            logger.warning(
                f"{name} exited early with code {e.returncode}, maybe another process "
                f"took its port. Launching again ({remaining} attempts remaining)"
            )
            continue
        except BaseException:
            handle.teardown()
            raise
        return Launched(handle, client)
