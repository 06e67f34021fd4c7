"""Resolving the executable to run for a daemon.

Resolution order:
1. An explicit override (argument, or the daemon's *_EXEC / *_EXE variable)
2. The first matching executable on the search path
3. A verified download, when a version is selected and download is enabled
"""

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from electrsd.core import download as downloader
from electrsd.domain.exceptions import BothEnvVars, NotExecutable, NotFound
from electrsd.domain.timeouts import DaemonTimeouts
from electrsd.domain.versions import ELECTRS, TAPYRUSD, VersionSpec, selected_version

logger = logging.getLogger(__name__)

OVERRIDE_ENV_VARS: dict[str, tuple[str, str]] = {
    ELECTRS: ("ELECTRS_EXEC", "ELECTRS_EXE"),
    TAPYRUSD: ("TAPYRUSD_EXEC", "TAPYRUSD_EXE"),
}


def env_override(daemon: str) -> Path | None:
    """Return the override path from the environment, if set.

    Raises:
        BothEnvVars: If both variables for the daemon are set
    """
    primary, alternate = OVERRIDE_ENV_VARS[daemon]
    first = os.environ.get(primary)
    second = os.environ.get(alternate)
    if first and second:
        raise BothEnvVars(
            f"Both {primary} and {alternate} are set",
            hint=f"Unset one of them; {alternate} is kept for compatibility only",
            daemon=daemon,
        )
    value = first or second
    return Path(value) if value else None


def _check_executable(path: Path, daemon: str) -> Path:
    if not path.is_file() or not os.access(path, os.X_OK):
        raise NotExecutable(
            f"{daemon} override {path} does not exist or is not executable",
            daemon=daemon,
        )
    return path


def probe_version(path: Path, timeout: float = DaemonTimeouts.VERSION_PROBE) -> str | None:
    """Run `<exe> --version` and return its combined output.

    Returns:
        The output, or None if the probe failed or timed out
    """
    try:
        result = subprocess.run(
            [str(path), "--version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Version probe of {path} failed: {e}")
        return None
    return result.stdout + result.stderr


def search(
    daemon: str,
    version_spec: VersionSpec | None = None,
    search_path: Sequence[Path] | None = None,
    probe_timeout: float = DaemonTimeouts.VERSION_PROBE,
) -> Path | None:
    """Find an executable named after the daemon on the search path.

    With a version spec, candidates whose `--version` output does not
    mention the bare version are skipped.

    Args:
        daemon: Executable name to look for
        version_spec: Required version, if any
        search_path: Directories to search (default: $PATH)
        probe_timeout: Timeout for each `--version` probe

    Returns:
        The first matching executable, or None
    """
    if search_path is None:
        directories = [Path(d) for d in os.environ.get("PATH", "").split(os.pathsep) if d]
    else:
        directories = [Path(d) for d in search_path]

    for directory in directories:
        found = shutil.which(daemon, path=str(directory))
        if found is None:
            continue
        candidate = Path(found)
        if version_spec is None:
            return candidate
        output = probe_version(candidate, timeout=probe_timeout)
        if output is not None and version_spec.bare_version in output:
            return candidate
        logger.debug(f"Skipping {candidate}: not {daemon} {version_spec.version}")
    return None


def locate(
    version_spec: VersionSpec | None = None,
    override_path: Path | str | None = None,
    *,
    daemon: str,
    search_path: Sequence[Path] | None = None,
    download: bool | None = None,
    cache_dir: Path | None = None,
    sha256_file: Path | None = None,
    probe_timeout: float = DaemonTimeouts.VERSION_PROBE,
    download_timeout: float = DaemonTimeouts.DOWNLOAD,
) -> Path:
    """Resolve the executable for a daemon.

    Args:
        version_spec: Release to require; also the release downloaded
        override_path: Explicit executable, bypassing search and download
        daemon: Daemon name ("electrs" or "tapyrusd")
        search_path: Directories to search instead of $PATH
        download: Force download on/off. None means "on when a version is
                  given and ELECTRSD_SKIP_DOWNLOAD is unset".
        cache_dir: Download cache root
        sha256_file: Checksum file in `sha256sum` format
        probe_timeout: Timeout for `--version` probes
        download_timeout: Timeout for fetching an archive

    Returns:
        Path to an executable file

    Raises:
        NotExecutable: If the override is not an executable file
        BothEnvVars: If both override variables are set
        IntegrityMismatch: If a downloaded archive fails verification
        DownloadFailed: If the platform is unsupported or fetching fails
        NotFound: If nothing matched
    """
    if daemon not in OVERRIDE_ENV_VARS:
        raise ValueError(f"Unknown daemon: {daemon!r}")

    if override_path is not None:
        return _check_executable(Path(override_path), daemon)

    from_env = env_override(daemon)
    if from_env is not None:
        logger.debug(f"Using {daemon} from environment: {from_env}")
        return _check_executable(from_env, daemon)

    found = search(daemon, version_spec, search_path, probe_timeout)
    if found is not None:
        logger.debug(f"Found {daemon} on search path: {found}")
        return found

    if download is None:
        download = downloader.download_enabled(version_spec)
    if download and version_spec is not None:
        return downloader.install(
            version_spec,
            cache_dir=cache_dir,
            sha256_file=sha256_file,
            timeout=download_timeout,
        )

    wanted = f"{daemon} {version_spec.version}" if version_spec else daemon
    env_vars = " or ".join(OVERRIDE_ENV_VARS[daemon])
    raise NotFound(
        f"No {wanted} executable found",
        hint=f"Install it on PATH, set {env_vars}, or select a version to download",
        daemon=daemon,
    )


def exe_path(daemon: str) -> Path:
    """Resolve a daemon using only the environment.

    The version comes from ELECTRSD_VERSION / TAPYRUSD_VERSION.
    """
    return locate(selected_version(daemon), daemon=daemon)


def downloaded_exe_path(daemon: str, cache_dir: Path | None = None) -> Path | None:
    """Return the cached download for the selected version, without fetching.

    Returns None when no version is selected, download is disabled, or
    nothing verified is cached yet.
    """
    spec = selected_version(daemon)
    if not downloader.download_enabled(spec):
        return None
    release_platform = spec.release_platform()
    if release_platform is None:
        return None
    archive_name = spec.archive_name(release_platform)
    return downloader.cached_executable(
        spec,
        release_platform,
        cache_dir or downloader.get_cache_dir(),
        downloader.pinned_digest(spec, archive_name),
    )
