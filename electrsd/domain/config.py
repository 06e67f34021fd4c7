"""Config domain models for electrsd.

Fixture configuration is expressed as frozen dataclasses validated on
construction. User-facing options (TapyrusConf, ElectrsConf) are resolved
into a DaemonConfig right before spawn; a DaemonConfig is never changed
afterwards since the daemon only reads its configuration at startup.
"""

from dataclasses import dataclass, field
from pathlib import Path

from electrsd.domain.timeouts import DaemonTimeouts
from electrsd.domain.value_objects import EndpointSet
from electrsd.domain.versions import VersionSpec

# Tapyrus dev network defaults: the network id, the genesis block it expects
# in `genesis.<networkid>`, and the signer key authorised to produce blocks.
DEV_NETWORK_ID = 1905960821
DEV_GENESIS_BLOCK = (
    "0100000000000000000000000000000000000000000000000000000000000000000000"
    "002b5331139c6bc8646bb4e5737c51378133f70b9712b75548cb3c05f9188670e744"
    "0d295e7300c5640730c4634402a3e66fb5d921f76b48d8972a484cc0361e66ef74f4"
    "5e012103af80b90d25145da28c583359beb47b21796b2fe1a23c1511e443e7a64dfd"
    "b27d40e05f064662d6b9acf65ae416379d82e11a9b78cdeb3a316d1057cd2780e372"
    "7f70a61f901d10acbe349cd11e04aa6b4351e782c44670aefbe138e99a5ce75ace01"
    "010000000100000000000000000000000000000000000000000000000000000000000000"
    "000000000000ffffffff0100f2052a010000001976a91445d405b9ed450fec8904"
    "4f9b7a99a4ef6fe2cd3f88ac00000000"
)
DEV_PRIVATE_KEY = "cUJN5RVzYWFoeY8rUztd47jzXCu1p57Ay8V7pqCzsBD3PEXN7Dd4"


@dataclass(frozen=True)
class Timeouts:
    """Timing policy for one fixture.

    Attributes:
        ready_deadline: Seconds to wait for readiness after spawn
        ready_interval: First pause between readiness attempts
        ready_backoff: Pause multiplier after each failed attempt
        ready_max_interval: Upper bound for the pause
        grace_period: Seconds to wait after the graceful signal
        kill_wait: Seconds to wait after SIGKILL before blocking on reap
        cleanup_attempts: Directory removal attempts
        cleanup_retry_delay: Pause between removal attempts
        client_socket: Client socket timeout
        version_probe: Timeout for `--version` probes
        download: Timeout for fetching one archive

    Raises:
        ValueError: If a duration is not positive, backoff is below 1, or
                   the interval exceeds its maximum.
    """

    ready_deadline: float = DaemonTimeouts.READY_DEADLINE
    ready_interval: float = DaemonTimeouts.READY_INTERVAL
    ready_backoff: float = DaemonTimeouts.READY_BACKOFF
    ready_max_interval: float = DaemonTimeouts.READY_MAX_INTERVAL
    grace_period: float = DaemonTimeouts.SIGTERM_WAIT
    kill_wait: float = DaemonTimeouts.SIGKILL_WAIT
    cleanup_attempts: int = DaemonTimeouts.CLEANUP_ATTEMPTS
    cleanup_retry_delay: float = DaemonTimeouts.CLEANUP_RETRY_DELAY
    client_socket: float = DaemonTimeouts.CLIENT_SOCKET
    version_probe: float = DaemonTimeouts.VERSION_PROBE
    download: float = DaemonTimeouts.DOWNLOAD

    def __post_init__(self) -> None:
        """Validate timeouts after initialization."""
        positive = {
            "ready_deadline": self.ready_deadline,
            "ready_interval": self.ready_interval,
            "ready_max_interval": self.ready_max_interval,
            "grace_period": self.grace_period,
            "kill_wait": self.kill_wait,
            "client_socket": self.client_socket,
            "version_probe": self.version_probe,
            "download": self.download,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.ready_backoff < 1:
            raise ValueError(f"ready_backoff must be >= 1, got {self.ready_backoff}")
        if self.ready_interval > self.ready_max_interval:
            raise ValueError(
                f"ready_interval ({self.ready_interval}) must not exceed "
                f"ready_max_interval ({self.ready_max_interval})"
            )
        if self.cleanup_attempts <= 0:
            raise ValueError(
                f"cleanup_attempts must be positive, got {self.cleanup_attempts}"
            )
        if self.cleanup_retry_delay < 0:
            raise ValueError(
                f"cleanup_retry_delay cannot be negative, got {self.cleanup_retry_delay}"
            )


@dataclass(frozen=True)
class NetworkParams:
    """Parameters of the private test network.

    Attributes:
        network_id: Tapyrus network id written as `networkid=`
        genesis_block: Hex-encoded genesis block written to `genesis.<id>`
        private_key: WIF signer key passed to `generatetoaddress`
        electrs_network: Network name electrs is started with

    Raises:
        ValueError: If network_id is not positive or genesis is not hex.
    """

    network_id: int = DEV_NETWORK_ID
    genesis_block: str = DEV_GENESIS_BLOCK
    private_key: str = DEV_PRIVATE_KEY
    electrs_network: str = "dev"

    def __post_init__(self) -> None:
        """Validate network parameters after initialization."""
        if self.network_id <= 0:
            raise ValueError(f"network_id must be positive, got {self.network_id}")
        try:
            bytes.fromhex(self.genesis_block)
        except ValueError as e:
            raise ValueError(f"genesis_block must be hex: {e}") from e

    @property
    def chain_dir(self) -> str:
        """Name of the per-network subdirectory tapyrusd creates in its datadir."""
        return f"dev-{self.network_id}"


@dataclass(frozen=True)
class TapyrusConf:
    """Options for a tapyrusd fixture.

    Attributes:
        args: Extra command line arguments. `-datadir` and `-conf` are set
              automatically.
        view_stdout: If True, daemon output goes to the test's stdout
        p2p: Open the P2P port for inbound connections (electrs needs it
             unless it imports blocks over JSON-RPC)
        connect: Optional "host:port" of a peer to connect to
        network: Test network parameters
        tmpdir: Create the temporary working directory under this path
        staticdir: Use this persistent working directory instead
        attempts: Extra spawn attempts when the daemon exits early (usually a
                  port taken between allocation and bind)
        timeouts: Timing policy
        version: Release to use when downloading

    Raises:
        ValueError: If attempts is negative.
    """

    args: tuple[str, ...] = ()
    view_stdout: bool = False
    p2p: bool = False
    connect: str | None = None
    network: NetworkParams = field(default_factory=NetworkParams)
    tmpdir: Path | None = None
    staticdir: Path | None = None
    attempts: int = 3
    timeouts: Timeouts = field(default_factory=Timeouts)
    version: VersionSpec | None = None

    def __post_init__(self) -> None:
        """Validate tapyrusd options after initialization."""
        if self.attempts < 0:
            raise ValueError(f"attempts cannot be negative, got {self.attempts}")


@dataclass(frozen=True)
class ElectrsConf:
    """Options for an electrs fixture.

    Attributes:
        args: Extra command line arguments. `--db-dir`, `--cookie-file`,
              `--daemon-rpc-addr`, `--jsonrpc-import`, `--electrum-rpc-addr`,
              `--monitoring-addr` and `--http-addr` are set automatically.
              When None, releases importing over JSON-RPC get `-vvv`.
        view_stderr: If True, electrs log output is not suppressed
        http_enabled: Expose an esplora HTTP endpoint
        network: Network name, must match tapyrusd
        tmpdir: Create the temporary working directory under this path
        staticdir: Use this persistent working directory instead
        legacy: Pass the cookie value with `--cookie` and import over JSON-RPC
        attempts: Extra spawn attempts when the daemon exits early
        timeouts: Timing policy
        version: Release to use when downloading

    Raises:
        ValueError: If attempts is negative.
    """

    args: tuple[str, ...] | None = None
    view_stderr: bool = False
    http_enabled: bool = False
    network: str = "dev"
    tmpdir: Path | None = None
    staticdir: Path | None = None
    legacy: bool = False
    attempts: int = 3
    timeouts: Timeouts = field(default_factory=Timeouts)
    version: VersionSpec | None = None

    def __post_init__(self) -> None:
        """Validate electrs options after initialization."""
        if self.attempts < 0:
            raise ValueError(f"attempts cannot be negative, got {self.attempts}")

    @property
    def jsonrpc_import(self) -> bool:
        """Whether electrs reads blocks over JSON-RPC rather than P2P."""
        return self.legacy or (self.version is not None and self.version.jsonrpc_import)

    def effective_args(self) -> tuple[str, ...]:
        """Return the extra arguments to pass, applying the default."""
        if self.args is not None:
            return self.args
        return ("-vvv",) if self.jsonrpc_import else ()


@dataclass(frozen=True)
class WorkDir:
    """A daemon working directory.

    Attributes:
        path: Directory path
        persistent: If True, teardown keeps the directory
    """

    path: Path
    persistent: bool = False


@dataclass(frozen=True)
class DaemonConfig:
    """Fully resolved configuration for one daemon process.

    Attributes:
        daemon: Daemon name
        workdir: Working directory (also the process cwd)
        endpoints: Ports the daemon listens on
        args: Command line arguments, without the executable
        conf_file: Configuration file written for the daemon, if any
        cookie_file: RPC cookie path, if the daemon uses cookie auth
        network_id: Network identifier the daemon runs on
    """

    daemon: str
    workdir: WorkDir
    endpoints: EndpointSet
    args: tuple[str, ...]
    conf_file: Path | None = None
    cookie_file: Path | None = None
    network_id: int | None = None


@dataclass(frozen=True)
class DownloadSettings:
    """Settings for fetching release archives.

    Attributes:
        enabled: Force download on/off. None means "on when a version is
                 selected and ELECTRSD_SKIP_DOWNLOAD is unset".
        cache_dir: Cache root, None for the platform default
        sha256_file: Checksum file in `sha256sum` format
    """

    enabled: bool | None = None
    cache_dir: Path | None = None
    sha256_file: Path | None = None


@dataclass(frozen=True)
class Settings:
    """Complete electrsd settings.

    Typically loaded from config.toml and used by the CLI and the pytest
    plugin to build fixture options.

    Attributes:
        timeouts: Timing policy
        network: Test network parameters
        download: Download settings
    """

    timeouts: Timeouts = field(default_factory=Timeouts)
    network: NetworkParams = field(default_factory=NetworkParams)
    download: DownloadSettings = field(default_factory=DownloadSettings)
