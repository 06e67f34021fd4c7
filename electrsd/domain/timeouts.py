"""Centralized timeout configuration for fixture operations.

All supervisor-related timeout values are defined here to:
1. Provide a single source of truth for tuning
2. Document the purpose of each timeout value
3. Enable easy adjustment for different environments (e.g., slow CI runners)

The values are defaults only. Every one of them can be overridden per
fixture through Timeouts, or globally through the [timeouts] section of the
settings file.
"""


class DaemonTimeouts:
    """Default timeout values for fixture operations.

    All values are in seconds unless otherwise noted.

    Groups:
        READY_*: Waiting for a daemon to answer on its client endpoint
        SIGTERM_*: Graceful shutdown timeouts
        SIGKILL_*: Force kill timeouts
        CLEANUP_*: Working directory removal
        CLIENT_*: Client socket timeouts
        VERSION_*: Executable version probing
    """

    # =========================================================================
    # Readiness
    # =========================================================================

    READY_DEADLINE: float = 30.0
    """Maximum time to wait for a daemon to become ready after spawn.

    tapyrusd on a fresh dev chain answers in well under a second; electrs
    needs to open its database and connect to tapyrusd first. A slow CI
    runner with cold disks can take several seconds for electrs.
    """

    READY_INTERVAL: float = 0.1
    """First pause between readiness attempts.

    Kept short so a fast daemon is picked up almost immediately.
    """

    READY_BACKOFF: float = 1.5
    """Multiplier applied to the pause after every failed attempt."""

    READY_MAX_INTERVAL: float = 1.0
    """Upper bound for the pause between readiness attempts.

    Caps the backoff so that a daemon becoming ready late is still noticed
    within a second, and so that a dying process is noticed quickly.
    """

    # =========================================================================
    # Graceful Shutdown (SIGTERM) Timeouts
    # =========================================================================

    SIGTERM_WAIT: float = 10.0
    """Time to wait for voluntary exit after the graceful signal.

    Gives the daemon time to flush its database. If the daemon doesn't stop
    within this time, SIGKILL is sent.
    """

    # =========================================================================
    # Force Kill (SIGKILL) Timeouts
    # =========================================================================

    SIGKILL_WAIT: float = 2.5
    """Time to wait after sending SIGKILL before blocking on the reap.

    SIGKILL cannot be caught or ignored, so in practice death is nearly
    instant. A process that survives this long is stuck in the kernel.
    """

    # =========================================================================
    # Working Directory Cleanup
    # =========================================================================

    CLEANUP_ATTEMPTS: int = 5
    """Number of times directory removal is attempted before giving up.

    A daemon killed mid-write can leave files appearing or vanishing while
    the tree is being removed.
    """

    CLEANUP_RETRY_DELAY: float = 0.2
    """Pause between directory removal attempts."""

    # =========================================================================
    # Client and Probe Timeouts
    # =========================================================================

    CLIENT_SOCKET: float = 5.0
    """Timeout for client socket operations (connect, send, receive)."""

    VERSION_PROBE: float = 5.0
    """Timeout for running `<exe> --version` while searching PATH."""

    DOWNLOAD: float = 120.0
    """Timeout for fetching one release archive."""
