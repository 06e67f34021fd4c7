"""Domain exceptions for electrsd fixture provisioning.

Every failure that aborts fixture creation derives from ElectrsdError and
carries the daemon it concerns, so the failing test reports which daemon and
which step broke. Teardown problems are not exceptions: they are reported as
TeardownWarning values and logged.
"""

from dataclasses import dataclass
from pathlib import Path


class ElectrsdError(Exception):
    """Base exception for all fixture errors.

    Attributes:
        message: User-facing error message.
        hint: Optional actionable suggestion.
        daemon: Name of the daemon the error concerns, if known.
    """

    def __init__(
        self, message: str, hint: str | None = None, daemon: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.daemon = daemon


# =============================================================================
# Binary location
# =============================================================================


class LocateError(ElectrsdError):
    """Raised when no usable executable can be resolved."""

    pass


class NotFound(LocateError):
    """No executable matched on the search path and download was unavailable."""

    pass


class NotExecutable(LocateError):
    """An explicit override path does not exist or is not executable."""

    pass


class IntegrityMismatch(LocateError):
    """A downloaded archive did not match its pinned sha256 digest.

    Always fatal. The archive is discarded and never extracted.
    """

    def __init__(
        self,
        message: str,
        expected: str | None = None,
        actual: str | None = None,
        daemon: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint="Check the pinned digest or ELECTRSD_SHA256_FILE",
            daemon=daemon,
        )
        self.expected = expected
        self.actual = actual


class DownloadFailed(LocateError):
    """The release archive could not be fetched or unpacked."""

    pass


class BothEnvVars(LocateError):
    """Both override environment variables for the same daemon are set."""

    pass


# =============================================================================
# Port allocation and configuration
# =============================================================================


class AllocationError(ElectrsdError):
    """Raised when local ports cannot be allocated."""

    pass


class PortsExhausted(AllocationError):
    """No set of free ports was found within the attempt budget."""

    pass


class ConfigError(ElectrsdError):
    """Raised for inconsistent fixture configuration."""

    pass


class BothDirsSpecified(ConfigError):
    """Both a temporary and a persistent working directory were requested."""

    pass


# =============================================================================
# Spawning and readiness
# =============================================================================


class SpawnError(ElectrsdError):
    """Raised when the daemon process cannot be created."""

    pass


class SpawnFailed(SpawnError):
    """The OS refused to create the process (missing binary, permissions)."""

    pass


class ReadinessError(ElectrsdError):
    """Raised when a spawned daemon never became ready."""

    pass


class TimedOut(ReadinessError):
    """The readiness deadline elapsed before the daemon answered."""

    def __init__(
        self, message: str, elapsed: float, attempts: int, daemon: str | None = None
    ) -> None:
        super().__init__(message, daemon=daemon)
        self.elapsed = elapsed
        self.attempts = attempts


class ProcessDied(ReadinessError):
    """The daemon exited (or was torn down) before becoming ready."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        output_tail: str = "",
        daemon: str | None = None,
    ) -> None:
        super().__init__(message, daemon=daemon)
        self.returncode = returncode
        self.output_tail = output_tail


# =============================================================================
# Teardown (non-fatal)
# =============================================================================


@dataclass(frozen=True)
class TeardownWarning:
    """A non-fatal problem met while tearing a daemon down.

    Attributes:
        daemon: Name of the daemon being torn down.
        message: Human readable description.
    """

    daemon: str
    message: str


@dataclass(frozen=True)
class CleanupIncomplete(TeardownWarning):
    """The working directory could not be fully removed.

    Attributes:
        path: The directory that was left behind.
    """

    path: Path | None = None
