"""An electrs (esplora-tapyrus) indexer attached to a TapyrusD, for tests."""

import contextlib
import logging
import signal
import sys
import time
from dataclasses import replace
from pathlib import Path

from electrsd.adapters.electrum.client import (
    DEFAULT_PROTOCOL,
    ElectrumClient,
    first_output_script,
)
from electrsd.core.config_synth import LOCALHOST, build_electrs_config
from electrsd.core.fixture import launch
from electrsd.core.locator import locate
from electrsd.core.port_allocator import PortAllocator, default_allocator
from electrsd.core.supervisor import DaemonHandle
from electrsd.core.tapyrusd import TapyrusD
from electrsd.domain.config import DaemonConfig, ElectrsConf, WorkDir
from electrsd.domain.exceptions import TeardownWarning
from electrsd.domain.value_objects import EndpointSet
from electrsd.domain.versions import ELECTRS, selected_version
from electrsd.ports.clients import ClientError

logger = logging.getLogger(__name__)

WAIT_ATTEMPTS = 600
WAIT_INTERVAL = 0.1


class ElectrsD:
    """A running electrs with an Electrum client attached.

    Example:
        with TapyrusD(conf=TapyrusConf(p2p=True)) as node, ElectrsD(tapyrusd=node) as electrs:
            tip = electrs.client.block_headers_subscribe()
    """

    def __init__(
        self,
        exe: Path | str | None = None,
        tapyrusd: TapyrusD | None = None,
        conf: ElectrsConf | None = None,
        allocator: PortAllocator | None = None,
    ):
        """Locate, configure and start electrs, blocking until it answers.

        Args:
            exe: Executable (default: resolved with locate())
            tapyrusd: Node to index
            conf: Options
            allocator: Port allocator (default: the process-wide one)

        Raises:
            ValueError: If no tapyrusd is given, or it has no P2P port and
                        electrs would import blocks over P2P
            ElectrsdError: If electrs cannot be started
        """
        if tapyrusd is None:
            raise ValueError("ElectrsD needs a running TapyrusD")
        conf = conf or ElectrsConf()
        version = conf.version or selected_version(ELECTRS)
        if conf.version is None and version is not None:
            conf = replace(conf, version=version)
        if tapyrusd.p2p_socket is None and not conf.jsonrpc_import:
            raise ValueError(
                "ElectrsD requires a TapyrusD with its P2P port open "
                "(TapyrusConf(p2p=True)) unless blocks are imported over JSON-RPC"
            )
        self.conf = conf
        self.tapyrusd = tapyrusd
        allocator = allocator or default_allocator()

        executable = locate(
            version,
            exe,
            daemon=ELECTRS,
            probe_timeout=conf.timeouts.version_probe,
            download_timeout=conf.timeouts.download,
        )
        self._leave_initial_block_download()

        launched = launch(
            executable,
            name=ELECTRS,
            port_count=3 if conf.http_enabled else 2,
            build_config=self._build_config,
            client_factory=self._client_factory,
            allocator=allocator,
            timeouts=conf.timeouts,
            tmpdir=conf.tmpdir,
            staticdir=conf.staticdir,
            view_stdout=conf.view_stderr,
            attempts=conf.attempts,
        )
        self.handle: DaemonHandle = launched.handle
        self.client: ElectrumClient = launched.client

    def _leave_initial_block_download(self) -> None:
        # electrs stays idle while the node reports initial block download,
        # and a fresh dev chain only leaves it once it sees a new block.
        info = self.tapyrusd.client.get_blockchain_info()
        if info.get("initialblockdownload"):
            address = self.tapyrusd.get_new_address()
            self.tapyrusd.generate_to_address(1, address)
            logger.debug("Mined one block to leave initial block download")

    def _build_config(self, ports: tuple[int, ...], workdir: WorkDir) -> DaemonConfig:
        http = ports[2] if self.conf.http_enabled else None
        return build_electrs_config(
            EndpointSet(client=ports[0], monitoring=ports[1], http=http),
            workdir,
            self.tapyrusd.config,
            network_name=self.conf.network,
            extra_args=self.conf.effective_args(),
            http_enabled=self.conf.http_enabled,
            jsonrpc_import=self.conf.jsonrpc_import,
            legacy=self.conf.legacy,
        )

    def _client_factory(self, handle: DaemonHandle):
        port = handle.endpoints.client
        timeout = self.conf.timeouts.client_socket
        version = self.conf.version
        protocol = version.protocol_max if version and version.protocol_max else DEFAULT_PROTOCOL

        def connect() -> ElectrumClient:
            return ElectrumClient.connect(LOCALHOST, port, timeout=timeout, protocol_version=protocol)

        return connect

    @property
    def config(self) -> DaemonConfig:
        return self.handle.config

    @property
    def electrum_url(self) -> str:
        return f"{LOCALHOST}:{self.config.endpoints.client}"

    @property
    def esplora_url(self) -> str | None:
        """Esplora HTTP address, None unless http_enabled."""
        if self.config.endpoints.http is None:
            return None
        return f"{LOCALHOST}:{self.config.endpoints.http}"

    @property
    def monitoring_url(self) -> str:
        return f"{LOCALHOST}:{self.config.endpoints.monitoring}"

    @property
    def workdir(self) -> Path:
        return self.handle.workdir

    def trigger(self) -> None:
        """Make electrs poll tapyrusd for new blocks right away."""
        if sys.platform == "win32":
            return
        self.handle.send_signal(signal.SIGUSR1)

    def wait_height(self, height: int) -> bool:
        """Wait up to a minute for the index to reach `height`.

        Returns:
            True once the header at `height` is served, False on timeout
        """
        for _ in range(WAIT_ATTEMPTS):
            try:
                self.client.block_header_raw(height)
                return True
            except (OSError, ClientError):
                time.sleep(WAIT_INTERVAL)
        logger.warning(f"electrs did not reach height {height}")
        return False

    def wait_tx(self, txid: str) -> bool:
        """Wait up to a minute for a transaction to be indexed.

        Having the raw transaction is not enough: its first output script
        must also list it in its history, which is updated atomically with
        the rest of the transaction.

        Returns:
            True once indexed, False on timeout
        """
        for _ in range(WAIT_ATTEMPTS):
            try:
                raw_tx = self.client.transaction_get(txid)
                script = first_output_script(raw_tx)
                if script is None:
                    return True
                history = self.client.script_get_history(script)
                if any(item.get("tx_hash") == txid for item in history):
                    return True
            except (OSError, ClientError):
                pass
            time.sleep(WAIT_INTERVAL)
        logger.warning(f"electrs did not index transaction {txid}")
        return False

    def kill(self) -> list[TeardownWarning]:
        """Terminate electrs and release its resources."""
        with contextlib.suppress(OSError):
            self.client.close()
        return self.handle.teardown()

    def __enter__(self) -> "ElectrsD":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.kill()

    def __repr__(self) -> str:
        return f"ElectrsD(electrum_url={self.electrum_url!r}, pid={self.handle.pid})"
