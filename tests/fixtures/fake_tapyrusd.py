"""Stand-in for tapyrusd used by lifecycle tests.

Reads the generated tapyrus.conf, writes an RPC cookie and serves a small
subset of JSON-RPC over HTTP. Behaviour is selected with FAKE_TAPYRUSD_MODE:

    serve        (default) answer RPC until SIGTERM/SIGINT or `stop`
    exit         print an error and exit with code 3 right away
    ignore-term  serve, but ignore SIGTERM and SIGINT
    never-ready  stay alive without ever opening the RPC port
"""

import base64
import json
import os
import signal
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

COOKIE_USER = "__cookie__"
COOKIE_PASSWORD = "fakesecret"


def parse_args(argv):
    options = {}
    for arg in argv:
        if arg.startswith("-") and "=" in arg:
            key, value = arg.lstrip("-").split("=", 1)
            options[key] = value
    return options


def parse_conf(path):
    values = {}
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("["):
            continue
        key, _, value = line.partition("=")
        values[key] = value
    return values


class State:
    def __init__(self):
        self.height = 0
        self.lock = threading.Lock()
        self.stop = threading.Event()


def make_handler(state, expected_auth):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            pass

        def do_POST(self):
            if self.headers.get("Authorization") != expected_auth:
                self.send_response(401)
                self.end_headers()
                return
            body = json.loads(self.rfile.read(int(self.headers["Content-Length"])))
            result, error = dispatch(state, body["method"], body.get("params", []))
            payload = json.dumps({"result": result, "error": error, "id": body.get("id")})
            self.send_response(500 if error else 200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload.encode())

    return Handler


def dispatch(state, method, params):
    with state.lock:
        if method == "getblockchaininfo":
            return {
                "chain": "dev",
                "blocks": state.height,
                "initialblockdownload": state.height == 0,
            }, None
        if method == "getblockcount":
            return state.height, None
        if method == "getnewaddress":
            return "1FakeAddressForTestsOnlyxxxxxxxxx", None
        if method == "generatetoaddress":
            if len(params) != 3:
                return None, {"code": -1, "message": "generatetoaddress needs a private key"}
            blocks = int(params[0])
            hashes = [f"{state.height + i + 1:064x}" for i in range(blocks)]
            state.height += blocks
            return hashes, None
        if method == "stop":
            state.stop.set()
            return "Tapyrus server stopping", None
    return None, {"code": -32601, "message": "Method not found"}


def main():
    if "--version" in sys.argv:
        print(f"Tapyrus Core Daemon version v{os.environ.get('FAKE_VERSION', '0.5.2')}")
        return 0

    mode = os.environ.get("FAKE_TAPYRUSD_MODE", "serve")
    options = parse_args(sys.argv[1:])
    datadir = Path(options["datadir"])
    (datadir / "argv.json").write_text(json.dumps(sys.argv[1:]))

    if mode == "exit":
        print("Error: Unable to bind to port, another process is using it", file=sys.stderr)
        return 3

    state = State()
    if mode == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGTERM, lambda *_: state.stop.set())
        signal.signal(signal.SIGINT, lambda *_: state.stop.set())

    if mode == "never-ready":
        while not state.stop.is_set():
            time.sleep(0.05)
        return 0

    conf = parse_conf(options["conf"])
    cookie_dir = datadir / f"dev-{conf['networkid']}"
    cookie_dir.mkdir(parents=True, exist_ok=True)
    (cookie_dir / ".cookie").write_text(f"{COOKIE_USER}:{COOKIE_PASSWORD}")
    token = base64.b64encode(f"{COOKIE_USER}:{COOKIE_PASSWORD}".encode()).decode()

    server = ThreadingHTTPServer(
        ("127.0.0.1", int(conf["rpcport"])), make_handler(state, f"Basic {token}")
    )
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    print(f"fake tapyrusd listening on {conf['rpcport']}", flush=True)

    while not state.stop.is_set():
        time.sleep(0.05)
    server.shutdown()
    (cookie_dir / ".cookie").unlink()
    print("fake tapyrusd stopped", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
