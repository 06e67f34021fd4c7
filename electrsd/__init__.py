"""Ephemeral tapyrusd and electrs daemons for integration tests."""

from electrsd.core.electrs import ElectrsD
from electrsd.core.locator import downloaded_exe_path, exe_path, locate
from electrsd.core.port_allocator import PortAllocator, default_allocator
from electrsd.core.tapyrusd import TapyrusD
from electrsd.domain.config import ElectrsConf, NetworkParams, TapyrusConf, Timeouts
from electrsd.domain.exceptions import (
    BothDirsSpecified,
    BothEnvVars,
    CleanupIncomplete,
    ElectrsdError,
    IntegrityMismatch,
    NotFound,
    ProcessDied,
    TeardownWarning,
    TimedOut,
)
from electrsd.domain.versions import VersionSpec, get_version_spec

__all__ = [
    "BothDirsSpecified",
    "BothEnvVars",
    "CleanupIncomplete",
    "ElectrsConf",
    "ElectrsD",
    "ElectrsdError",
    "IntegrityMismatch",
    "NetworkParams",
    "NotFound",
    "PortAllocator",
    "ProcessDied",
    "TapyrusConf",
    "TapyrusD",
    "TeardownWarning",
    "TimedOut",
    "Timeouts",
    "VersionSpec",
    "default_allocator",
    "downloaded_exe_path",
    "exe_path",
    "get_version_spec",
    "locate",
]
