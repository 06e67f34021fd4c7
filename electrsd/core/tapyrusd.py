"""A tapyrusd node on a private dev network, for tests."""

import logging
from pathlib import Path

from electrsd.adapters.rpc.client import RpcClient, RpcError
from electrsd.core.config_synth import LOCALHOST, build_tapyrusd_config
from electrsd.core.fixture import launch
from electrsd.core.locator import locate
from electrsd.core.port_allocator import PortAllocator, default_allocator
from electrsd.core.supervisor import DaemonHandle
from electrsd.domain.config import DaemonConfig, NetworkParams, TapyrusConf, WorkDir
from electrsd.domain.exceptions import TeardownWarning
from electrsd.domain.value_objects import EndpointSet
from electrsd.domain.versions import TAPYRUSD, selected_version

logger = logging.getLogger(__name__)


class TapyrusD:
    """A running tapyrusd with an RPC client attached.

    Example:
        with TapyrusD(exe_path("tapyrusd")) as node:
            address = node.get_new_address()
            node.generate_to_address(101, address)
    """

    def __init__(
        self,
        exe: Path | str | None = None,
        conf: TapyrusConf | None = None,
        allocator: PortAllocator | None = None,
    ):
        """Locate, configure and start tapyrusd, blocking until RPC answers.

        Args:
            exe: Executable (default: resolved with locate())
            conf: Options
            allocator: Port allocator (default: the process-wide one)

        Raises:
            ElectrsdError: If the node cannot be started
        """
        self.conf = conf or TapyrusConf()
        self.params: NetworkParams = self.conf.network
        allocator = allocator or default_allocator()
        version = self.conf.version or selected_version(TAPYRUSD)
        executable = locate(
            version,
            exe,
            daemon=TAPYRUSD,
            probe_timeout=self.conf.timeouts.version_probe,
            download_timeout=self.conf.timeouts.download,
        )

        launched = launch(
            executable,
            name=TAPYRUSD,
            port_count=2,
            build_config=self._build_config,
            client_factory=self._client_factory,
            allocator=allocator,
            timeouts=self.conf.timeouts,
            tmpdir=self.conf.tmpdir,
            staticdir=self.conf.staticdir,
            view_stdout=self.conf.view_stdout,
            attempts=self.conf.attempts,
        )
        self.handle: DaemonHandle = launched.handle
        self.client: RpcClient = launched.client

    def _build_config(self, ports: tuple[int, ...], workdir: WorkDir) -> DaemonConfig:
        rpc, p2p = ports
        return build_tapyrusd_config(
            EndpointSet(rpc=rpc, p2p=p2p),
            workdir,
            network=self.conf.network,
            extra_args=self.conf.args,
            listen=self.conf.p2p,
            connect=self.conf.connect,
        )

    def _client_factory(self, handle: DaemonHandle):
        url = f"http://{LOCALHOST}:{handle.endpoints.rpc}"
        cookie_file = handle.config.cookie_file
        timeout = self.conf.timeouts.client_socket

        def connect() -> RpcClient:
            return RpcClient.connect(url, cookie_file=cookie_file, timeout=timeout)

        return connect

    @property
    def config(self) -> DaemonConfig:
        return self.handle.config

    @property
    def rpc_url(self) -> str:
        return self.client.url

    @property
    def rpc_socket(self) -> tuple[str, int]:
        return (LOCALHOST, self.config.endpoints.rpc)

    @property
    def p2p_socket(self) -> tuple[str, int] | None:
        """P2P address, None unless the node accepts inbound peers."""
        if not self.conf.p2p:
            return None
        return (LOCALHOST, self.config.endpoints.p2p)

    @property
    def cookie_file(self) -> Path:
        return self.config.cookie_file

    @property
    def workdir(self) -> Path:
        return self.handle.workdir

    def get_private_key(self) -> str:
        """WIF key of the network's block signer."""
        return self.params.private_key

    def get_new_address(self) -> str:
        return self.client.get_new_address()

    def generate_to_address(
        self, blocks: int, address: str, private_key: str | None = None
    ) -> list[str]:
        """Mine blocks, signed with the network signer unless a key is given."""
        return self.client.generate_to_address(
            blocks, address, private_key or self.get_private_key()
        )

    def get_block_count(self) -> int:
        return self.client.get_block_count()

    def kill(self) -> list[TeardownWarning]:
        """Terminate the node and release its resources."""
        self.client.close()
        return self.handle.teardown()

    def stop(self) -> list[TeardownWarning]:
        """Ask the node to shut down over RPC, then tear down."""
        if not self.handle.is_torn_down:
            try:
                self.client.stop()
            except (OSError, RpcError) as e:
                logger.debug(f"RPC stop failed, falling back to signals: {e}")
        return self.kill()

    def __enter__(self) -> "TapyrusD":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.kill()

    def __repr__(self) -> str:
        return f"TapyrusD(rpc_url={self.rpc_url!r}, pid={self.handle.pid})"
