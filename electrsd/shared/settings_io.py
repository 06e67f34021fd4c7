"""Settings I/O utilities for reading and writing TOML settings files.

This module handles serialization/deserialization of Settings to/from TOML format.
"""

import os
import platform
import tomllib
from dataclasses import asdict
from pathlib import Path
from typing import Any

import tomli_w

from electrsd.domain.config import DownloadSettings, NetworkParams, Settings, Timeouts

CONFIG_ENV = "ELECTRSD_CONFIG"


def get_settings_path() -> Path:
    """Get the path to the settings file.

    The location is platform-dependent:
    - $ELECTRSD_CONFIG if set
    - Linux/macOS: $XDG_CONFIG_HOME/electrsd/config.toml or ~/.config/electrsd/config.toml
    - Windows: %APPDATA%/electrsd/config.toml

    Returns:
        Path to the settings file (may not exist)
    """
    override = os.environ.get(CONFIG_ENV, "")
    if override:
        return Path(override)
    if platform.system() == "Windows":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "electrsd" / "config.toml"
        return Path.home() / ".config" / "electrsd" / "config.toml"
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        return Path(xdg_config) / "electrsd" / "config.toml"
    return Path.home() / ".config" / "electrsd" / "config.toml"


def load_settings_data(path: Path) -> dict[str, Any]:
    """Load raw TOML data from a settings file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is malformed
    """
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in settings file: {e}") from e


def _section(data: dict[str, Any], name: str, cls: type) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table")
    known = set(cls.__dataclass_fields__)
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in [{name}]: {', '.join(sorted(unknown))}")
    return section


def settings_data_to_settings(data: dict[str, Any]) -> Settings:
    """Convert raw settings data to Settings, keeping defaults for missing keys.

    Raises:
        ValueError: If a section has unknown keys or invalid values
    """
    timeouts = _section(data, "timeouts", Timeouts)
    network = _section(data, "network", NetworkParams)
    download = dict(_section(data, "download", DownloadSettings))
    for key in ("cache_dir", "sha256_file"):
        if download.get(key):
            download[key] = Path(download[key]).expanduser()

    try:
        return Settings(
            timeouts=Timeouts(**timeouts),
            network=NetworkParams(**network),
            download=DownloadSettings(**download),
        )
    except TypeError as e:
        raise ValueError(f"Invalid settings: {e}") from e


def load_settings(path: Path | None = None) -> Settings:
    """Load settings, falling back to defaults when no file exists.

    Args:
        path: Settings file (default: get_settings_path())

    Raises:
        ValueError: If the file is malformed
    """
    path = path or get_settings_path()
    if not path.exists():
        return Settings()
    return settings_data_to_settings(load_settings_data(path))


def settings_to_data(settings: Settings) -> dict[str, Any]:
    """Convert Settings to a TOML-serializable dictionary."""
    download: dict[str, Any] = {}
    if settings.download.enabled is not None:
        download["enabled"] = settings.download.enabled
    if settings.download.cache_dir is not None:
        download["cache_dir"] = str(settings.download.cache_dir)
    if settings.download.sha256_file is not None:
        download["sha256_file"] = str(settings.download.sha256_file)

    return {
        "timeouts": asdict(settings.timeouts),
        "network": asdict(settings.network),
        "download": download,
    }


def save_settings(settings: Settings, path: Path) -> None:
    """Save settings to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        tomli_w.dump(settings_to_data(settings), f)


def create_default_settings_file(path: Path) -> None:
    """Create a default settings file with comments."""
    defaults = Timeouts()
    template = f"""\
# electrsd settings
# Created by: electrsd config init

[timeouts]
# Seconds to wait for a daemon to answer after spawn
ready_deadline = {defaults.ready_deadline}

# First pause between readiness attempts, its multiplier and its cap
ready_interval = {defaults.ready_interval}
ready_backoff = {defaults.ready_backoff}
ready_max_interval = {defaults.ready_max_interval}

# Seconds between the graceful signal and SIGKILL
grace_period = {defaults.grace_period}

# Seconds to wait after SIGKILL
kill_wait = {defaults.kill_wait}

# Working directory removal attempts and pause between them
cleanup_attempts = {defaults.cleanup_attempts}
cleanup_retry_delay = {defaults.cleanup_retry_delay}

[download]
# Directory for downloaded executables (default: ~/.cache/electrsd)
# cache_dir = "~/.cache/electrsd"

# Checksum file in sha256sum format pinning release archives
# sha256_file = "~/electrsd.sha256"

[network]
# Network id of the private dev chain
# network_id = 1905960821
"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template, encoding="utf-8")
