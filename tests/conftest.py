"""Pytest configuration and shared fixtures."""

import gc
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from electrsd.core.port_allocator import PortAllocator
from electrsd.domain.config import Timeouts
from tests.fixtures import FAKE_ELECTRS, FAKE_TAPYRUSD

# Every variable the library reads. Cleared for each test so the developer's
# environment cannot change results.
ELECTRSD_ENV_VARS = (
    "ELECTRS_EXEC",
    "ELECTRS_EXE",
    "TAPYRUSD_EXEC",
    "TAPYRUSD_EXE",
    "ELECTRSD_VERSION",
    "TAPYRUSD_VERSION",
    "ELECTRSD_SKIP_DOWNLOAD",
    "ELECTRSD_DOWNLOAD_ENDPOINT",
    "TAPYRUSD_DOWNLOAD_ENDPOINT",
    "ELECTRSD_SHA256_FILE",
    "ELECTRSD_CACHE_DIR",
    "ELECTRSD_CONFIG",
    "TEMPDIR_ROOT",
    "FAKE_TAPYRUSD_MODE",
    "FAKE_ELECTRS_MODE",
    "FAKE_VERSION",
)

# ============================================================================
# Environment Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def clean_electrsd_env(monkeypatch: pytest.MonkeyPatch, request: pytest.FixtureRequest):
    """Remove electrsd environment variables for the duration of each test.

    Tests marked `slow` keep the environment, since that is how the real
    executables are located.
    """
    if request.node.get_closest_marker("slow") is None:
        for name in ELECTRSD_ENV_VARS:
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def collect_finalizers():
    """Run finalizers of handles a test dropped without tearing down."""
    yield
    gc.collect()
    gc.collect()


# ============================================================================
# Fake Daemon Helpers
# ============================================================================


def write_executable(path: Path, content: str) -> Path:
    """Write a script and mark it executable.

    Args:
        path: Destination file. Parent directories are created.
        content: Script content, including the shebang line.

    Returns:
        The path written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def write_wrapper(bin_dir: Path, name: str, script: Path) -> Path:
    """Create `bin_dir/name` running a Python script with this interpreter.

    The wrapper uses `exec`, so the daemon's PID is the Python process and
    signals reach it directly.
    """
    return write_executable(
        bin_dir / name,
        f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n',
    )


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    """Directory for fake executables."""
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def fake_exe(bin_dir: Path) -> Callable[[str, Path], Path]:
    """Factory creating a fake daemon executable in `bin_dir`.

    Example:
        exe = fake_exe("electrs", FAKE_ELECTRS)
    """

    def factory(name: str, script: Path) -> Path:
        return write_wrapper(bin_dir, name, script)

    return factory


@pytest.fixture
def fake_tapyrusd_exe(fake_exe) -> Path:
    """Executable behaving like tapyrusd (see tests/fixtures/fake_tapyrusd.py)."""
    return fake_exe("tapyrusd", FAKE_TAPYRUSD)


@pytest.fixture
def fake_electrs_exe(fake_exe) -> Path:
    """Executable behaving like electrs (see tests/fixtures/fake_electrs.py)."""
    return fake_exe("electrs", FAKE_ELECTRS)


@pytest.fixture
def allocator() -> PortAllocator:
    """A private port allocator, so tests don't share reservations."""
    return PortAllocator()


@pytest.fixture
def fast_timeouts() -> Timeouts:
    """Short timeouts keeping lifecycle tests quick."""
    return Timeouts(
        ready_deadline=10.0,
        ready_interval=0.05,
        ready_max_interval=0.2,
        grace_period=2.0,
        kill_wait=2.0,
        cleanup_attempts=2,
        cleanup_retry_delay=0.01,
        client_socket=2.0,
    )
