"""electrsd CLI entrypoint.

Command-line interface for locating, pre-fetching and running the tapyrusd
and electrs test daemons by hand.
"""

import functools
import logging
import time
from pathlib import Path

import click
import tomli_w

from electrsd.core.download import install
from electrsd.core.errors import ElectrsdCliError
from electrsd.core.locator import locate
from electrsd.domain.config import ElectrsConf, Settings, TapyrusConf
from electrsd.domain.exceptions import ElectrsdError
from electrsd.domain.versions import (
    DAEMONS,
    ELECTRS,
    TAPYRUSD,
    VersionSpec,
    get_version_spec,
    selected_version,
)
from electrsd.shared.settings_io import (
    create_default_settings_file,
    get_settings_path,
    load_settings,
    settings_to_data,
)
from electrsd.version import __version__

logger = logging.getLogger(__name__)


def handle_cli_errors(command_name: str):
    """Decorator to handle common CLI errors.

    Domain errors become ElectrsdCliError with their hint; anything else is
    reported as unexpected, with a traceback in verbose mode.

    Args:
        command_name: Name of the command for error messages.

    Returns:
        Decorated function with error handling.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (ElectrsdCliError, click.exceptions.Exit, click.Abort):
                raise
            except ElectrsdError as e:
                raise ElectrsdCliError(e.message, hint=e.hint) from e
            except ValueError as e:
                raise ElectrsdCliError(str(e)) from e
            except Exception as e:
                ctx = click.get_current_context()
                if ctx.obj.get("verbose", False):
                    import traceback

                    traceback.print_exc()
                raise ElectrsdCliError(
                    f"Unexpected error in {command_name}: {e}",
                    hint="Run with --verbose for more details",
                ) from e

        return wrapper

    return decorator


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_settings() -> Settings:
    try:
        return load_settings()
    except ValueError as e:
        raise ElectrsdCliError(
            f"Invalid settings file {get_settings_path()}: {e}",
            hint="Fix the file or recreate it with 'electrsd config init --force'",
        ) from e


def _version_spec(daemon: str, version: str | None) -> VersionSpec | None:
    if version:
        return get_version_spec(daemon, version)
    return selected_version(daemon)


def _locate(daemon: str, version: str | None, settings: Settings, download: bool | None):
    if download is None:
        download = settings.download.enabled
    return locate(
        _version_spec(daemon, version),
        daemon=daemon,
        download=download,
        cache_dir=settings.download.cache_dir,
        sha256_file=settings.download.sha256_file,
        probe_timeout=settings.timeouts.version_probe,
        download_timeout=settings.timeouts.download,
    )


@click.group()
@click.version_option(version=__version__, prog_name="electrsd")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """electrsd - tapyrusd and electrs fixtures for tests.

    Locates or downloads the daemons and runs a private dev network.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose, quiet)


@cli.command("locate")
@click.argument("daemon", type=click.Choice(DAEMONS))
@click.option("--version", "version", help="Required release (default: from environment).")
@click.option(
    "--download/--no-download",
    default=None,
    help="Allow or forbid downloading when nothing is found locally.",
)
@handle_cli_errors("locate")
def locate_cmd(daemon: str, version: str | None, download: bool | None) -> None:
    """Print the path of the executable that would be used for DAEMON."""
    path = _locate(daemon, version, _load_settings(), download)
    click.echo(str(path))


@cli.command()
@click.argument("daemon", type=click.Choice(DAEMONS))
@click.option("--version", "version", required=True, help="Release to download.")
@click.option(
    "--sha256-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Checksum file in sha256sum format.",
)
@click.option("--sha256", "digest", help="Expected sha256 digest of the archive.")
@click.pass_context
@handle_cli_errors("fetch")
def fetch(
    ctx: click.Context,
    daemon: str,
    version: str,
    sha256_file: Path | None,
    digest: str | None,
) -> None:
    """Download, verify and cache a DAEMON release."""
    settings = _load_settings()
    spec = get_version_spec(daemon, version)
    if digest:
        spec = spec.with_sha256(digest)
    path = install(
        spec,
        cache_dir=settings.download.cache_dir,
        sha256_file=sha256_file or settings.download.sha256_file,
        timeout=settings.timeouts.download,
    )
    if not ctx.obj.get("quiet", False):
        click.echo(f"✓ {daemon} {spec.version} verified and cached")
    click.echo(str(path))


@cli.command()
@click.option("--tapyrusd-version", help="tapyrusd release (default: from environment).")
@click.option("--electrs-version", help="electrs release (default: from environment).")
@click.option("--http", "http_enabled", is_flag=True, help="Expose the esplora HTTP API.")
@click.option("--blocks", default=0, show_default=True, help="Blocks to mine after start.")
@click.option(
    "--staticdir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Keep daemon data under this directory.",
)
@click.option("--view-output", is_flag=True, help="Show daemon output.")
@click.pass_context
@handle_cli_errors("run")
def run(
    ctx: click.Context,
    tapyrusd_version: str | None,
    electrs_version: str | None,
    http_enabled: bool,
    blocks: int,
    staticdir: Path | None,
    view_output: bool,
) -> None:
    """Run tapyrusd and electrs until interrupted."""
    from electrsd.core.electrs import ElectrsD
    from electrsd.core.tapyrusd import TapyrusD

    settings = _load_settings()
    tapyrusd_exe = _locate(TAPYRUSD, tapyrusd_version, settings, None)
    electrs_exe = _locate(ELECTRS, electrs_version, settings, None)

    tapyrus_conf = TapyrusConf(
        p2p=True,
        view_stdout=view_output,
        network=settings.network,
        staticdir=staticdir / TAPYRUSD if staticdir else None,
        timeouts=settings.timeouts,
    )
    electrs_conf = ElectrsConf(
        view_stderr=view_output,
        http_enabled=http_enabled,
        network=settings.network.electrs_network,
        staticdir=staticdir / ELECTRS if staticdir else None,
        timeouts=settings.timeouts,
        version=_version_spec(ELECTRS, electrs_version),
    )

    quiet = ctx.obj.get("quiet", False)
    with TapyrusD(tapyrusd_exe, tapyrus_conf) as node:
        with ElectrsD(electrs_exe, node, electrs_conf) as electrs:
            if blocks > 0:
                node.generate_to_address(blocks, node.get_new_address())
                electrs.trigger()
            if not quiet:
                click.echo(f"✓ tapyrusd RPC:    {node.rpc_url}")
                click.echo(f"  cookie file:     {node.cookie_file}")
                click.echo(f"✓ electrum:        {electrs.electrum_url}")
                if electrs.esplora_url:
                    click.echo(f"✓ esplora:         http://{electrs.esplora_url}")
                click.echo("Press Ctrl-C to stop")
            try:
                while electrs.handle.returncode is None and node.handle.returncode is None:
                    time.sleep(0.5)
            except KeyboardInterrupt:
                pass

            if electrs.handle.returncode is not None:
                raise ElectrsdCliError(
                    f"electrs exited with code {electrs.handle.returncode}",
                    hint="Run with --view-output to see its log",
                )
            if node.handle.returncode is not None:
                raise ElectrsdCliError(
                    f"tapyrusd exited with code {node.handle.returncode}",
                    hint="Run with --view-output to see its log",
                )
    if not quiet:
        click.echo("✓ Stopped")


@cli.group()
def config() -> None:
    """Manage the electrsd settings file."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing settings file.")
@handle_cli_errors("config init")
def config_init(force: bool) -> None:
    """Create a settings file with default values."""
    path = get_settings_path()
    if path.exists() and not force:
        raise ElectrsdCliError(
            f"Settings file already exists: {path}",
            hint="Use --force to overwrite it",
        )
    create_default_settings_file(path)
    click.echo(f"Created settings file at {path}")


@config.command("show")
@handle_cli_errors("config show")
def config_show() -> None:
    """Show the effective settings."""
    path = get_settings_path()
    source = str(path) if path.exists() else "defaults"
    click.echo(f"# Source: {source}")
    click.echo(tomli_w.dumps(settings_to_data(_load_settings())), nl=False)


if __name__ == "__main__":
    cli()
