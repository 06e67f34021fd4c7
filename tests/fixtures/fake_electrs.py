"""Stand-in for electrs used by lifecycle tests.

Serves the Electrum protocol on --electrum-rpc-addr. The chain height is
read from the tapyrusd given with --daemon-rpc-addr when its cookie is
available, so tests can mine blocks and watch the index follow. Behaviour is
selected with FAKE_ELECTRS_MODE:

    serve        (default) answer requests until SIGTERM/SIGINT
    exit         print an error and exit with code 101 right away
    ignore-term  serve, but ignore SIGTERM and SIGINT
    never-ready  stay alive without ever opening the Electrum port
"""

import base64
import hashlib
import json
import os
import signal
import socket
import sys
import threading
import time
import urllib.request
from pathlib import Path

# A transaction with one input and one P2PKH output, for wait_tx tests.
KNOWN_TX = (
    "01000000"
    "01" + "11" * 32 + "00000000" + "00" + "ffffffff"
    "01" + "00e1f50500000000" + "19" + "76a914" + "22" * 20 + "88ac"
    "00000000"
)
KNOWN_TXID = "ab" * 32
KNOWN_SCRIPT = "76a914" + "22" * 20 + "88ac"


def parse_args(argv):
    options = {}
    flags = set()
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg.startswith("--") and i + 1 < len(argv) and not argv[i + 1].startswith("--"):
            options[arg[2:]] = argv[i + 1]
            i += 2
        else:
            flags.add(arg.lstrip("-"))
            i += 1
    return options, flags


def chain_height(options):
    cookie_file = options.get("cookie-file")
    rpc_addr = options.get("daemon-rpc-addr")
    if not cookie_file or not rpc_addr:
        return 1
    try:
        token = base64.b64encode(Path(cookie_file).read_text().strip().encode()).decode()
        request = urllib.request.Request(
            f"http://{rpc_addr}",
            data=json.dumps({"method": "getblockcount", "params": [], "id": 1}).encode(),
            headers={"Authorization": f"Basic {token}", "Content-Type": "application/json"},
        )
        with urllib.request.urlopen(request, timeout=2) as response:
            return json.loads(response.read())["result"]
    except (OSError, ValueError, KeyError):
        return 0


def handle(method, params, options):
    if method == "server.version":
        return ["fake-electrs 0.5.1", "1.4"], None
    if method == "server.ping":
        return None, None
    if method == "blockchain.headers.subscribe":
        return {"height": chain_height(options), "hex": "00" * 80}, None
    if method == "blockchain.block.header":
        if int(params[0]) > chain_height(options):
            return None, {"code": 1, "message": "missing header"}
        return "00" * 80, None
    if method == "blockchain.transaction.get":
        if params[0] != KNOWN_TXID:
            return None, {"code": 2, "message": "tx not found"}
        return KNOWN_TX, None
    if method == "blockchain.scripthash.get_history":
        expected = hashlib.sha256(bytes.fromhex(KNOWN_SCRIPT)).digest()[::-1].hex()
        if params[0] == expected and Path(options["db-dir"], "tx-indexed").exists():
            return [{"tx_hash": KNOWN_TXID, "height": 2}], None
        return [], None
    return None, {"code": -32601, "message": f"unknown method {method}"}


def serve_client(conn, options):
    buffer = b""
    with conn:
        while True:
            try:
                chunk = conn.recv(4096)
            except OSError:
                return
            if not chunk:
                return
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                request = json.loads(line)
                result, error = handle(request["method"], request.get("params", []), options)
                reply = {"jsonrpc": "2.0", "id": request["id"]}
                if error:
                    reply["error"] = error
                else:
                    reply["result"] = result
                conn.sendall((json.dumps(reply) + "\n").encode())


def main():
    if "--version" in sys.argv:
        print(f"electrs {os.environ.get('FAKE_VERSION', '0.5.1')}")
        return 0

    mode = os.environ.get("FAKE_ELECTRS_MODE", "serve")
    options, flags = parse_args(sys.argv[1:])
    db_dir = Path(options["db-dir"])
    (db_dir / "argv.json").write_text(json.dumps(sys.argv[1:]))

    if mode == "exit":
        print("Error: failed to bind electrum rpc address", file=sys.stderr)
        return 101

    stop = threading.Event()
    if mode == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
        signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGUSR1, lambda *_: (db_dir / "triggered").touch())

    if mode == "never-ready":
        while not stop.is_set():
            time.sleep(0.05)
        return 0

    host, port = options["electrum-rpc-addr"].rsplit(":", 1)
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind((host, int(port)))
    server.listen()
    server.settimeout(0.05)
    print(f"fake electrs listening on {port}", flush=True)

    while not stop.is_set():
        try:
            conn, _ = server.accept()
        except TimeoutError:
            continue
        except OSError:
            break
        threading.Thread(target=serve_client, args=(conn, options), daemon=True).start()
    server.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
