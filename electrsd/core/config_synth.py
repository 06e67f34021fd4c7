"""Working directories and per-daemon configuration.

tapyrusd reads a generated `tapyrus.conf` plus the genesis block file of the
network it joins; electrs is configured entirely on its command line. Each
builder returns a new DaemonConfig that is never modified afterwards.
"""

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from electrsd.domain.config import DaemonConfig, NetworkParams, WorkDir
from electrsd.domain.exceptions import BothDirsSpecified
from electrsd.domain.value_objects import EndpointSet
from electrsd.domain.versions import ELECTRS, TAPYRUSD

logger = logging.getLogger(__name__)

TEMPDIR_ROOT_ENV = "TEMPDIR_ROOT"
LOCALHOST = "127.0.0.1"
CONF_FILE_NAME = "tapyrus.conf"


def create_workdir(
    root: Path | None = None,
    prefix: str = "electrsd-",
    staticdir: Path | None = None,
) -> WorkDir:
    """Create the working directory for one daemon.

    Args:
        root: Parent for a temporary directory. Defaults to $TEMPDIR_ROOT,
              then the OS temp dir.
        prefix: Name prefix; the pid and a random suffix are appended
        staticdir: Persistent directory to use instead (created if missing,
                   kept on teardown)

    Returns:
        WorkDir for the new directory

    Raises:
        BothDirsSpecified: If both root and staticdir are given
    """
    if root is not None and staticdir is not None:
        raise BothDirsSpecified(
            "tmpdir and staticdir cannot be set at the same time",
            hint="Use tmpdir for a throwaway directory or staticdir to keep data",
        )

    if staticdir is not None:
        staticdir = Path(staticdir)
        staticdir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Using persistent working directory {staticdir}")
        return WorkDir(path=staticdir, persistent=True)

    if root is None and os.environ.get(TEMPDIR_ROOT_ENV):
        root = Path(os.environ[TEMPDIR_ROOT_ENV])
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)

    path = Path(tempfile.mkdtemp(prefix=f"{prefix}{os.getpid()}-", dir=root))
    logger.debug(f"Created working directory {path}")
    return WorkDir(path=path, persistent=False)


def render_tapyrus_conf(
    endpoints: EndpointSet,
    network: NetworkParams,
    listen: bool,
    connect: str | None = None,
) -> str:
    """Render the contents of tapyrus.conf.

    Global options come first; per-network options live in the `[dev]`
    section, which is the only place tapyrusd honours them on a dev chain.
    """
    lines = [
        f"networkid={network.network_id}",
        "dev=1",
        "",
        "[dev]",
        "server=1",
        "txindex=1",
        "fallbackfee=0.0001",
        "discover=0",
        "dnsseed=0",
        "listenonion=0",
        f"rpcport={endpoints.rpc}",
        f"rpcbind={LOCALHOST}",
        f"rpcallowip={LOCALHOST}",
        f"port={endpoints.p2p}",
        f"bind={LOCALHOST}",
        f"listen={1 if listen else 0}",
    ]
    if connect:
        lines.append(f"connect={connect}")
    return "\n".join(lines) + "\n"


def build_tapyrusd_config(
    endpoints: EndpointSet,
    workdir: WorkDir,
    network: NetworkParams | None = None,
    extra_args: Sequence[str] = (),
    listen: bool = False,
    connect: str | None = None,
) -> DaemonConfig:
    """Write tapyrusd's files into the working directory.

    Args:
        endpoints: Ports with rpc and p2p set
        workdir: Working directory, used as -datadir
        network: Network parameters (default: the dev network)
        extra_args: Additional command line arguments
        listen: Accept inbound P2P connections
        connect: Optional "host:port" of a peer

    Returns:
        DaemonConfig with `-datadir`/`-conf` args and the cookie path

    Raises:
        ValueError: If rpc or p2p port is missing
    """
    if endpoints.rpc is None or endpoints.p2p is None:
        raise ValueError("tapyrusd needs both rpc and p2p ports")
    network = network or NetworkParams()

    datadir = workdir.path
    genesis_file = datadir / f"genesis.{network.network_id}"
    genesis_file.write_text(network.genesis_block + "\n", encoding="utf-8")

    conf_file = datadir / CONF_FILE_NAME
    conf_file.write_text(
        render_tapyrus_conf(endpoints, network, listen=listen, connect=connect),
        encoding="utf-8",
    )
    logger.debug(f"Wrote {conf_file} (rpc={endpoints.rpc}, p2p={endpoints.p2p})")

    return DaemonConfig(
        daemon=TAPYRUSD,
        workdir=workdir,
        endpoints=endpoints,
        args=(f"-datadir={datadir}", f"-conf={conf_file}", *extra_args),
        conf_file=conf_file,
        cookie_file=datadir / network.chain_dir / ".cookie",
        network_id=network.network_id,
    )


def build_electrs_config(
    endpoints: EndpointSet,
    workdir: WorkDir,
    daemon: DaemonConfig,
    network_name: str = "dev",
    extra_args: Sequence[str] = (),
    http_enabled: bool = False,
    jsonrpc_import: bool = False,
    legacy: bool = False,
) -> DaemonConfig:
    """Build the electrs command line for a running tapyrusd.

    Args:
        endpoints: Ports with client and monitoring set (http when enabled)
        workdir: Working directory, used as --db-dir
        daemon: Config of the tapyrusd electrs indexes
        network_name: Value for --network
        extra_args: Additional command line arguments, placed first
        http_enabled: Expose the esplora HTTP API
        jsonrpc_import: Import blocks over JSON-RPC instead of P2P
        legacy: Pass the cookie value with --cookie (implies jsonrpc_import)

    Returns:
        DaemonConfig for electrs

    Raises:
        ValueError: If a required port is missing
        OSError: In legacy mode, if the tapyrusd cookie cannot be read
    """
    if endpoints.client is None or endpoints.monitoring is None:
        raise ValueError("electrs needs client and monitoring ports")
    if http_enabled and endpoints.http is None:
        raise ValueError("http_enabled requires an http port")
    if daemon.endpoints.rpc is None or daemon.cookie_file is None:
        raise ValueError("tapyrusd config has no rpc port or cookie file")

    args = [
        *extra_args,
        "--db-dir",
        str(workdir.path),
        "--network",
        network_name,
    ]
    if legacy:
        args += ["--cookie", daemon.cookie_file.read_text(encoding="utf-8").strip()]
    else:
        args += ["--cookie-file", str(daemon.cookie_file)]

    args += ["--daemon-rpc-addr", f"{LOCALHOST}:{daemon.endpoints.rpc}"]
    if jsonrpc_import or legacy:
        args.append("--jsonrpc-import")
    else:
        if daemon.endpoints.p2p is None:
            raise ValueError("tapyrusd config has no p2p port")
        args += ["--daemon-p2p-addr", f"{LOCALHOST}:{daemon.endpoints.p2p}"]

    args += [
        "--electrum-rpc-addr",
        f"{LOCALHOST}:{endpoints.client}",
        "--monitoring-addr",
        f"{LOCALHOST}:{endpoints.monitoring}",
    ]
    if http_enabled:
        args += ["--http-addr", f"{LOCALHOST}:{endpoints.http}"]

    return DaemonConfig(
        daemon=ELECTRS,
        workdir=workdir,
        endpoints=endpoints,
        args=tuple(args),
        cookie_file=daemon.cookie_file,
        network_id=daemon.network_id,
    )
