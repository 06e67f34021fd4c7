"""pytest fixtures for tests needing tapyrusd and electrs.

Registered through the `pytest11` entry point, so installing electrsd makes
the `tapyrusd` and `electrsd` fixtures available everywhere:

    def test_tip(electrsd):
        assert electrsd.client.block_headers_subscribe()["height"] >= 1

Executables are resolved from the environment (ELECTRS_EXEC, TAPYRUSD_EXEC,
ELECTRSD_VERSION, ...) and settings come from the electrsd settings file.
Tests using the fixtures are skipped when an executable cannot be found.
"""

from collections.abc import Iterator
from pathlib import Path

import pytest

from electrsd.core.electrs import ElectrsD
from electrsd.core.locator import locate
from electrsd.core.tapyrusd import TapyrusD
from electrsd.domain.config import ElectrsConf, Settings, TapyrusConf
from electrsd.domain.exceptions import NotFound
from electrsd.domain.versions import ELECTRS, TAPYRUSD, selected_version
from electrsd.shared.settings_io import load_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("electrsd")
    group.addoption(
        "--electrsd-view-output",
        action="store_true",
        default=False,
        help="Show tapyrusd and electrs output instead of capturing it to log files.",
    )


def _locate_or_skip(daemon: str, settings: Settings) -> Path:
    try:
        return locate(
            selected_version(daemon),
            daemon=daemon,
            download=settings.download.enabled,
            cache_dir=settings.download.cache_dir,
            sha256_file=settings.download.sha256_file,
            probe_timeout=settings.timeouts.version_probe,
            download_timeout=settings.timeouts.download,
        )
    except NotFound as e:
        pytest.skip(f"{daemon} not available: {e.message}")


@pytest.fixture(scope="session")
def electrsd_settings() -> Settings:
    """Settings loaded once per session."""
    return load_settings()


@pytest.fixture
def tapyrusd(
    request: pytest.FixtureRequest, electrsd_settings: Settings, tmp_path: Path
) -> Iterator[TapyrusD]:
    """A fresh tapyrusd on a private dev network, torn down after the test."""
    exe = _locate_or_skip(TAPYRUSD, electrsd_settings)
    conf = TapyrusConf(
        p2p=True,
        view_stdout=request.config.getoption("--electrsd-view-output"),
        network=electrsd_settings.network,
        tmpdir=tmp_path,
        timeouts=electrsd_settings.timeouts,
    )
    with TapyrusD(exe, conf) as node:
        yield node


@pytest.fixture
def electrsd(
    request: pytest.FixtureRequest,
    electrsd_settings: Settings,
    tapyrusd: TapyrusD,
    tmp_path: Path,
) -> Iterator[ElectrsD]:
    """A fresh electrs indexing the `tapyrusd` fixture, torn down after the test."""
    exe = _locate_or_skip(ELECTRS, electrsd_settings)
    conf = ElectrsConf(
        view_stderr=request.config.getoption("--electrsd-view-output"),
        network=electrsd_settings.network.electrs_network,
        tmpdir=tmp_path,
        timeouts=electrsd_settings.timeouts,
        version=selected_version(ELECTRS),
    )
    with ElectrsD(exe, tapyrusd, conf) as electrs:
        yield electrs
