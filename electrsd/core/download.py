"""Fetching, verifying and unpacking daemon release archives.

Archives are cached under `<cache>/<daemon>/<version>/<platform>/` together
with a manifest.toml recording the digest they were verified against, so
repeated test runs do not download again. An archive is extracted only after
its sha256 digest matched the pinned one; there is no way to run an
unverified binary.
"""

import hashlib
import io
import logging
import os
import platform
import tarfile
import tempfile
import tomllib
from pathlib import Path
from typing import Any

import requests
import tomli_w

from electrsd.domain.exceptions import DownloadFailed, IntegrityMismatch
from electrsd.domain.timeouts import DaemonTimeouts
from electrsd.domain.versions import VersionSpec, host_key

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.toml"
SKIP_DOWNLOAD_ENV = "ELECTRSD_SKIP_DOWNLOAD"
SHA256_FILE_ENV = "ELECTRSD_SHA256_FILE"
CACHE_DIR_ENV = "ELECTRSD_CACHE_DIR"


def get_cache_dir() -> Path:
    """Get the root directory for downloaded executables.

    The location is platform-dependent:
    - $ELECTRSD_CACHE_DIR if set
    - Linux/macOS: $XDG_CACHE_HOME/electrsd or ~/.cache/electrsd
    - Windows: %LOCALAPPDATA%/electrsd

    Returns:
        Path to the cache root (may not exist)
    """
    override = os.environ.get(CACHE_DIR_ENV, "")
    if override:
        return Path(override)
    if platform.system() == "Windows":
        local_appdata = os.environ.get("LOCALAPPDATA", "")
        if local_appdata:
            return Path(local_appdata) / "electrsd"
        return Path.home() / ".cache" / "electrsd"
    xdg_cache = os.environ.get("XDG_CACHE_HOME", "")
    if xdg_cache:
        return Path(xdg_cache) / "electrsd"
    return Path.home() / ".cache" / "electrsd"


def download_enabled(spec: VersionSpec | None) -> bool:
    """Download is on when a version is selected and not explicitly skipped."""
    return spec is not None and SKIP_DOWNLOAD_ENV not in os.environ


def read_sha256_file(path: Path, filename: str) -> str | None:
    """Look up a digest in a `sha256sum`-style file ("<hex>  <name>" lines).

    Args:
        path: Checksum file
        filename: Archive file name to look up

    Returns:
        Lowercase hex digest, or None if the file has no entry for filename
    """
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.warning(f"Cannot read checksum file {path}: {e}")
        return None

    for line in lines:
        tokens = line.strip().split(maxsplit=1)
        if len(tokens) == 2 and tokens[1].lstrip("*") == filename:
            return tokens[0].lower()
    return None


def pinned_digest(
    spec: VersionSpec, archive_name: str, sha256_file: Path | None = None
) -> str | None:
    """Resolve the digest an archive must match.

    The VersionSpec's own digest wins; otherwise the checksum file given
    explicitly or through ELECTRSD_SHA256_FILE is consulted.
    """
    if spec.sha256:
        return spec.sha256.lower()
    if sha256_file is None and os.environ.get(SHA256_FILE_ENV):
        sha256_file = Path(os.environ[SHA256_FILE_ENV])
    if sha256_file is None:
        return None
    return read_sha256_file(sha256_file, archive_name)


def cache_path(spec: VersionSpec, release_platform: str, cache_dir: Path) -> Path:
    """Directory holding the cached executable for a version and platform."""
    return cache_dir / spec.daemon / spec.version / release_platform


def fetch_archive(url: str, timeout: float = DaemonTimeouts.DOWNLOAD) -> bytes:
    """Download an archive into memory.

    Raises:
        DownloadFailed: On any transport or HTTP error
    """
    logger.info(f"Downloading {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise DownloadFailed(
            f"Failed to download {url}: {e}",
            hint="Set ELECTRSD_DOWNLOAD_ENDPOINT to a reachable mirror, "
            "or point ELECTRS_EXEC/TAPYRUSD_EXEC at a local binary",
        ) from e
    return response.content


def verify_sha256(data: bytes, expected: str | None, filename: str, daemon: str) -> str:
    """Check downloaded bytes against the pinned digest.

    Args:
        data: Archive content
        expected: Pinned hex digest, None when nothing is pinned
        filename: Archive name, for error messages
        daemon: Daemon name, for error messages

    Returns:
        The verified hex digest

    Raises:
        IntegrityMismatch: If no digest is pinned or the digest differs
    """
    actual = hashlib.sha256(data).hexdigest()
    if expected is None:
        raise IntegrityMismatch(
            f"No pinned sha256 for {filename}; refusing to run an unverified binary "
            f"(downloaded digest {actual})",
            actual=actual,
            daemon=daemon,
        )
    if actual != expected.lower():
        raise IntegrityMismatch(
            f"sha256 mismatch for {filename}: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
            daemon=daemon,
        )
    return actual


def extract_executable(data: bytes, executable: str, destination: Path) -> Path:
    """Write the archive member named `executable` to `destination`.

    Only the file contents are copied, so member paths inside the archive
    can never escape the cache directory.

    Raises:
        DownloadFailed: If the archive is unreadable or lacks the executable
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive.getmembers():
                if member.isfile() and Path(member.name).name == executable:
                    source = archive.extractfile(member)
                    if source is None:
                        continue
                    _write_atomically(source.read(), destination)
                    return destination
    except (tarfile.TarError, OSError, EOFError) as e:
        raise DownloadFailed(f"Cannot unpack archive: {e}") from e

    raise DownloadFailed(f"Archive does not contain an executable named {executable!r}")


def _write_atomically(content: bytes, destination: Path) -> None:
    """Write an executable file so readers never observe a partial binary."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=".partial-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.chmod(tmp_name, 0o755)
        os.replace(tmp_name, destination)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_manifest(directory: Path) -> dict[str, Any] | None:
    """Load the manifest of a cache entry, None if missing or malformed."""
    path = directory / MANIFEST_NAME
    if not path.exists():
        return None
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable cache manifest {path}: {e}")
        return None


def save_manifest(directory: Path, data: dict[str, Any]) -> None:
    """Write the manifest of a cache entry."""
    directory.mkdir(parents=True, exist_ok=True)
    with (directory / MANIFEST_NAME).open("wb") as f:
        tomli_w.dump(data, f)


def cached_executable(
    spec: VersionSpec, release_platform: str, cache_dir: Path, expected: str | None
) -> Path | None:
    """Return the cached executable if it was verified against `expected`."""
    directory = cache_path(spec, release_platform, cache_dir)
    executable = directory / spec.executable
    if expected is None or not executable.is_file():
        return None
    manifest = load_manifest(directory)
    if manifest is None or manifest.get("sha256") != expected.lower():
        return None
    return executable


def install(
    spec: VersionSpec,
    cache_dir: Path | None = None,
    sha256_file: Path | None = None,
    endpoint: str | None = None,
    timeout: float = DaemonTimeouts.DOWNLOAD,
    host: str | None = None,
) -> Path:
    """Make the executable for `spec` available in the cache.

    Args:
        spec: Release to install
        cache_dir: Cache root (default: get_cache_dir())
        sha256_file: Checksum file to consult when spec has no digest
        endpoint: Base URL override
        timeout: Download timeout
        host: Host key override (default: the running host)

    Returns:
        Path to the verified executable

    Raises:
        DownloadFailed: If the platform is unsupported or fetching fails
        IntegrityMismatch: If the archive does not match its pinned digest
    """
    host = host or host_key()
    release_platform = spec.release_platform(host)
    if release_platform is None:
        raise DownloadFailed(
            f"No {spec.daemon} {spec.version} release for platform {host}",
            hint="Build the daemon yourself and set its *_EXEC environment variable",
            daemon=spec.daemon,
        )

    cache_dir = cache_dir or get_cache_dir()
    archive_name = spec.archive_name(release_platform)
    expected = pinned_digest(spec, archive_name, sha256_file)

    cached = cached_executable(spec, release_platform, cache_dir, expected)
    if cached is not None:
        logger.debug(f"Using cached {spec.daemon} {spec.version}: {cached}")
        return cached

    url = spec.download_url(release_platform, endpoint)
    data = fetch_archive(url, timeout=timeout)
    digest = verify_sha256(data, expected, archive_name, spec.daemon)

    directory = cache_path(spec, release_platform, cache_dir)
    executable = extract_executable(data, spec.executable, directory / spec.executable)
    save_manifest(
        directory,
        {
            "daemon": spec.daemon,
            "version": spec.version,
            "platform": release_platform,
            "archive": archive_name,
            "url": url,
            "sha256": digest,
        },
    )
    logger.info(f"Installed {spec.daemon} {spec.version} to {executable}")
    return executable
