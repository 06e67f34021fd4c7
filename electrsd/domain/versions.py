"""Release versions known to the fixture and how to fetch them.

A VersionSpec is chosen once, when a fixture is configured, either
explicitly or from the ELECTRSD_VERSION / TAPYRUSD_VERSION environment
variables. It describes where the release archive lives, which member of the
archive is the executable, and the digest it must match.
"""

import os
import platform
import sys
from dataclasses import dataclass, field, replace

ELECTRS = "electrs"
TAPYRUSD = "tapyrusd"
DAEMONS = (ELECTRS, TAPYRUSD)

ELECTRS_DOWNLOAD_ENDPOINT = "https://github.com/chaintope/esplora-tapyrus/releases/download"
TAPYRUSD_DOWNLOAD_ENDPOINT = "https://github.com/chaintope/tapyrus-core/releases/download"

VERSION_ENV_VARS: dict[str, str] = {
    ELECTRS: "ELECTRSD_VERSION",
    TAPYRUSD: "TAPYRUSD_VERSION",
}

ENDPOINT_ENV_VARS: dict[str, str] = {
    ELECTRS: "ELECTRSD_DOWNLOAD_ENDPOINT",
    TAPYRUSD: "TAPYRUSD_DOWNLOAD_ENDPOINT",
}


@dataclass(frozen=True)
class VersionSpec:
    """A pinned daemon release.

    Attributes:
        daemon: Daemon name ("electrs" or "tapyrusd").
        version: Release tag as published (e.g. "v0.5.1" or "0.5.2").
        archive_template: Archive file name with {version}, {bare} and
            {platform} placeholders.
        url_template: Download URL with {endpoint}, {tag} and {archive}
            placeholders.
        default_endpoint: Base URL used unless overridden by environment.
        executable: File name of the binary inside the archive.
        platforms: Host key ("linux-x86_64") to release platform triple.
        sha256: Pinned hex digest of the archive, if known.
        protocol_min: Lowest client protocol version to negotiate.
        protocol_max: Highest client protocol version to negotiate.
        jsonrpc_import: electrs imports blocks over JSON-RPC instead of P2P.

    Raises:
        ValueError: If daemon is unknown or version is empty.
    """

    daemon: str
    version: str
    archive_template: str
    url_template: str
    default_endpoint: str
    executable: str
    platforms: dict[str, str] = field(default_factory=dict)
    sha256: str | None = None
    protocol_min: str | None = None
    protocol_max: str | None = None
    jsonrpc_import: bool = False

    def __post_init__(self) -> None:
        """Validate version spec after initialization."""
        if self.daemon not in DAEMONS:
            raise ValueError(f"Unknown daemon: {self.daemon!r}")
        if not self.version:
            raise ValueError("version cannot be empty")
        if self.sha256 is not None and len(self.sha256) != 64:
            raise ValueError(f"sha256 must be 64 hex chars, got {self.sha256!r}")

    def __hash__(self) -> int:
        return hash((self.daemon, self.version, self.sha256))

    @property
    def bare_version(self) -> str:
        """Version without a leading 'v' (as printed by --version)."""
        return self.version.removeprefix("v")

    @property
    def tag(self) -> str:
        """Git tag the release is published under."""
        return self.version if self.version.startswith("v") else f"v{self.version}"

    def release_platform(self, host: str | None = None) -> str | None:
        """Return the release platform triple for a host key, if published."""
        return self.platforms.get(host or host_key())

    def archive_name(self, release_platform: str) -> str:
        """Return the archive file name for a release platform."""
        return self.archive_template.format(
            version=self.version, bare=self.bare_version, platform=release_platform
        )

    def download_url(self, release_platform: str, endpoint: str | None = None) -> str:
        """Return the archive URL, honouring the endpoint override variable."""
        endpoint = (
            endpoint
            or os.environ.get(ENDPOINT_ENV_VARS[self.daemon])
            or self.default_endpoint
        )
        return self.url_template.format(
            endpoint=endpoint.rstrip("/"),
            tag=self.tag,
            archive=self.archive_name(release_platform),
        )

    def with_sha256(self, sha256: str) -> "VersionSpec":
        """Return a copy of this spec pinned to the given digest."""
        return replace(self, sha256=sha256.lower())


def host_key() -> str:
    """Return "<os>-<arch>" for the running interpreter (e.g. "linux-x86_64")."""
    system = "darwin" if sys.platform == "darwin" else sys.platform.split("-")[0]
    if system.startswith("linux"):
        system = "linux"
    machine = platform.machine().lower()
    machine = {"amd64": "x86_64", "arm64": "aarch64"}.get(machine, machine)
    return f"{system}-{machine}"


def _electrs(version: str) -> VersionSpec:
    return VersionSpec(
        daemon=ELECTRS,
        version=version,
        archive_template="esplora-tapyrus-{version}-{platform}.tar.gz",
        url_template="{endpoint}/{tag}/{archive}",
        default_endpoint=ELECTRS_DOWNLOAD_ENDPOINT,
        executable="electrs",
        platforms={"linux-x86_64": "x86_64-unknown-linux-gnu"},
        protocol_min="1.4",
        protocol_max="1.4",
        jsonrpc_import=True,
    )


def _tapyrusd(version: str) -> VersionSpec:
    return VersionSpec(
        daemon=TAPYRUSD,
        version=version,
        archive_template="tapyrus-core-{bare}-{platform}.tar.gz",
        url_template="{endpoint}/{tag}/{archive}",
        default_endpoint=TAPYRUSD_DOWNLOAD_ENDPOINT,
        executable="tapyrusd",
        platforms={
            "linux-x86_64": "x86_64-linux-gnu",
            "linux-aarch64": "aarch64-linux-gnu",
            "darwin-x86_64": "x86_64-apple-darwin",
        },
    )


KNOWN_VERSIONS: dict[str, dict[str, VersionSpec]] = {
    ELECTRS: {
        "v0.5.0": _electrs("v0.5.0"),
        "v0.5.1": _electrs("v0.5.1"),
    },
    TAPYRUSD: {
        "0.5.1": _tapyrusd("0.5.1"),
        "0.5.2": _tapyrusd("0.5.2"),
    },
}


def get_version_spec(daemon: str, version: str) -> VersionSpec:
    """Look up a known release, accepting tags with or without a leading 'v'.

    Args:
        daemon: Daemon name.
        version: Version string, e.g. "0.5.1" or "v0.5.1".

    Returns:
        The matching VersionSpec.

    Raises:
        ValueError: If the daemon or version is unknown.
    """
    if daemon not in KNOWN_VERSIONS:
        raise ValueError(f"Unknown daemon: {daemon!r}")
    bare = version.strip().removeprefix("v")
    for spec in KNOWN_VERSIONS[daemon].values():
        if spec.bare_version == bare:
            return spec
    known = ", ".join(KNOWN_VERSIONS[daemon])
    raise ValueError(f"Unknown {daemon} version {version!r} (known: {known})")


def selected_version(daemon: str) -> VersionSpec | None:
    """Return the version selected through the environment, if any.

    Raises:
        ValueError: If the environment names an unknown version.
    """
    value = os.environ.get(VERSION_ENV_VARS[daemon], "").strip()
    if not value:
        return None
    return get_version_spec(daemon, value)
