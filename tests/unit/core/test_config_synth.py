"""Unit tests for working directories and daemon configuration."""

import os
from pathlib import Path

import pytest

from electrsd.core.config_synth import (
    build_electrs_config,
    build_tapyrusd_config,
    create_workdir,
    render_tapyrus_conf,
)
from electrsd.domain.config import NetworkParams, WorkDir
from electrsd.domain.exceptions import BothDirsSpecified
from electrsd.domain.value_objects import EndpointSet


@pytest.fixture
def tapyrusd_config(tmp_path: Path):
    datadir = tmp_path / "tapyrusd"
    datadir.mkdir()
    return build_tapyrusd_config(EndpointSet(rpc=18443, p2p=18444), WorkDir(path=datadir))


class TestCreateWorkdir:
    """Tests for create_workdir()."""

    def test_temporary_dir_under_root(self, tmp_path: Path) -> None:
        """Test a fresh directory is created under the given root."""
        workdir = create_workdir(root=tmp_path, prefix="tapyrusd-")
        assert workdir.path.parent == tmp_path
        assert workdir.path.name.startswith(f"tapyrusd-{os.getpid()}-")
        assert workdir.persistent is False

    def test_distinct_directories(self, tmp_path: Path) -> None:
        """Test two calls never share a directory."""
        assert create_workdir(root=tmp_path).path != create_workdir(root=tmp_path).path

    def test_tempdir_root_env(self, tmp_path: Path, monkeypatch) -> None:
        """Test TEMPDIR_ROOT is used when no root is given."""
        root = tmp_path / "ramdisk"
        monkeypatch.setenv("TEMPDIR_ROOT", str(root))
        assert create_workdir().path.parent == root

    def test_staticdir_is_persistent(self, tmp_path: Path) -> None:
        """Test a static directory is created and marked persistent."""
        static = tmp_path / "keep" / "me"
        workdir = create_workdir(staticdir=static)
        assert workdir.path == static
        assert workdir.persistent is True
        assert static.is_dir()

    def test_both_dirs_raise(self, tmp_path: Path) -> None:
        """Test tmpdir and staticdir are mutually exclusive."""
        with pytest.raises(BothDirsSpecified):
            create_workdir(root=tmp_path, staticdir=tmp_path / "static")


class TestTapyrusdConfig:
    """Tests for tapyrus.conf generation."""

    def test_render_binds_localhost_in_dev_section(self) -> None:
        """Test per-network options follow the [dev] header."""
        text = render_tapyrus_conf(EndpointSet(rpc=1000, p2p=1001), NetworkParams(), listen=False)
        head, _, section = text.partition("[dev]\n")
        assert "networkid=1905960821" in head
        assert "dev=1" in head
        assert "rpcport=1000" in section
        assert "port=1001" in section
        assert "rpcbind=127.0.0.1" in section
        assert "listen=0" in section
        assert "connect=" not in text

    def test_render_listen_and_connect(self) -> None:
        """Test P2P options are rendered when requested."""
        text = render_tapyrus_conf(
            EndpointSet(rpc=1000, p2p=1001), NetworkParams(), listen=True, connect="127.0.0.1:9"
        )
        assert "listen=1" in text
        assert text.endswith("connect=127.0.0.1:9\n")

    def test_writes_conf_and_genesis(self, tapyrusd_config) -> None:
        """Test files are written into the data directory."""
        datadir = tapyrusd_config.workdir.path
        assert tapyrusd_config.conf_file == datadir / "tapyrus.conf"
        assert tapyrusd_config.conf_file.is_file()
        genesis = datadir / "genesis.1905960821"
        assert genesis.read_text().strip() == NetworkParams().genesis_block

    def test_args_and_cookie(self, tapyrusd_config) -> None:
        """Test command line and cookie location."""
        datadir = tapyrusd_config.workdir.path
        assert tapyrusd_config.daemon == "tapyrusd"
        assert tapyrusd_config.args == (
            f"-datadir={datadir}",
            f"-conf={datadir / 'tapyrus.conf'}",
        )
        assert tapyrusd_config.cookie_file == datadir / "dev-1905960821" / ".cookie"
        assert tapyrusd_config.network_id == 1905960821

    def test_extra_args_appended(self, tmp_path: Path) -> None:
        """Test user arguments come after the generated ones."""
        config = build_tapyrusd_config(
            EndpointSet(rpc=1, p2p=2), WorkDir(path=tmp_path), extra_args=("-debug=net",)
        )
        assert config.args[-1] == "-debug=net"

    def test_missing_port_raises(self, tmp_path: Path) -> None:
        """Test both rpc and p2p ports are required."""
        with pytest.raises(ValueError, match="rpc and p2p"):
            build_tapyrusd_config(EndpointSet(rpc=1), WorkDir(path=tmp_path))


class TestElectrsConfig:
    """Tests for the electrs command line."""

    def test_p2p_import_args(self, tapyrusd_config, tmp_path: Path) -> None:
        """Test the default command line fetches blocks over P2P."""
        workdir = WorkDir(path=tmp_path / "db")
        config = build_electrs_config(
            EndpointSet(client=50001, monitoring=4224), workdir, tapyrusd_config
        )
        assert config.args == (
            "--db-dir",
            str(workdir.path),
            "--network",
            "dev",
            "--cookie-file",
            str(tapyrusd_config.cookie_file),
            "--daemon-rpc-addr",
            "127.0.0.1:18443",
            "--daemon-p2p-addr",
            "127.0.0.1:18444",
            "--electrum-rpc-addr",
            "127.0.0.1:50001",
            "--monitoring-addr",
            "127.0.0.1:4224",
        )

    def test_jsonrpc_import_with_http_and_extra_args(self, tapyrusd_config, tmp_path: Path) -> None:
        """Test v0.5 style arguments with the esplora HTTP API."""
        config = build_electrs_config(
            EndpointSet(client=1, monitoring=2, http=3),
            WorkDir(path=tmp_path),
            tapyrusd_config,
            extra_args=("-vvv",),
            http_enabled=True,
            jsonrpc_import=True,
        )
        assert config.args[0] == "-vvv"
        assert "--jsonrpc-import" in config.args
        assert "--daemon-p2p-addr" not in config.args
        assert config.args[-2:] == ("--http-addr", "127.0.0.1:3")

    def test_legacy_passes_cookie_value(self, tapyrusd_config, tmp_path: Path) -> None:
        """Test legacy mode reads the cookie and passes it inline."""
        cookie = tapyrusd_config.cookie_file
        cookie.parent.mkdir(parents=True)
        cookie.write_text("__cookie__:secret\n")
        config = build_electrs_config(
            EndpointSet(client=1, monitoring=2), WorkDir(path=tmp_path), tapyrusd_config, legacy=True
        )
        index = config.args.index("--cookie")
        assert config.args[index + 1] == "__cookie__:secret"
        assert "--cookie-file" not in config.args
        assert "--jsonrpc-import" in config.args

    def test_http_without_port_raises(self, tapyrusd_config, tmp_path: Path) -> None:
        """Test enabling HTTP needs an http port."""
        with pytest.raises(ValueError, match="http port"):
            build_electrs_config(
                EndpointSet(client=1, monitoring=2),
                WorkDir(path=tmp_path),
                tapyrusd_config,
                http_enabled=True,
            )

    def test_missing_client_port_raises(self, tapyrusd_config, tmp_path: Path) -> None:
        """Test client and monitoring ports are required."""
        with pytest.raises(ValueError, match="client and monitoring"):
            build_electrs_config(EndpointSet(client=1), WorkDir(path=tmp_path), tapyrusd_config)
