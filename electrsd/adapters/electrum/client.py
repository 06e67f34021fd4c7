"""Electrum protocol client for electrs.

A thin, synchronous client holding one TCP connection. It covers the calls
fixtures and tests need; it is not a wallet library.
"""

import contextlib
import hashlib
import logging
import socket
import struct
from typing import Any

from electrsd.adapters.electrum.protocol import (
    LineReader,
    ProtocolError,
    Request,
    Response,
    is_notification,
    send_message,
)
from electrsd.domain.timeouts import DaemonTimeouts

logger = logging.getLogger(__name__)

CLIENT_NAME = "electrsd"
DEFAULT_PROTOCOL = "1.4"


def script_hash(script: bytes) -> str:
    """Electrum script hash: reversed sha256 of the script, hex-encoded."""
    return hashlib.sha256(script).digest()[::-1].hex()


def _read_varint(data: bytes, offset: int) -> tuple[int, int]:
    prefix = data[offset]
    if prefix < 0xFD:
        return prefix, offset + 1
    size = {0xFD: 2, 0xFE: 4, 0xFF: 8}[prefix]
    (value,) = struct.unpack_from({2: "<H", 4: "<I", 8: "<Q"}[size], data, offset + 1)
    return value, offset + 1 + size


def _decode_hex(result: Any, what: str) -> bytes:
    if not isinstance(result, str):
        raise ProtocolError(f"Expected hex {what}, got {type(result).__name__}")
    try:
        return bytes.fromhex(result)
    except ValueError as e:
        raise ProtocolError(f"Invalid hex {what}: {e}") from e


def first_output_script(raw_tx: bytes) -> bytes | None:
    """Return the scriptPubKey of the first output of a serialized transaction.

    Returns:
        The script, or None if the transaction has no outputs

    Raises:
        ProtocolError: If the transaction cannot be parsed
    """
    try:
        offset = 4  # version
        n_inputs, offset = _read_varint(raw_tx, offset)
        for _ in range(n_inputs):
            offset += 36  # prevout
            script_len, offset = _read_varint(raw_tx, offset)
            offset += script_len + 4  # script, sequence
        n_outputs, offset = _read_varint(raw_tx, offset)
        if n_outputs == 0:
            return None
        offset += 8  # value
        script_len, offset = _read_varint(raw_tx, offset)
        script = raw_tx[offset : offset + script_len]
    except (IndexError, KeyError, struct.error) as e:
        raise ProtocolError(f"Malformed transaction: {e}") from e
    if len(script) != script_len:
        raise ProtocolError("Malformed transaction: truncated output script")
    return script


class ElectrumClient:
    """Connection to an Electrum server.

    Use `ElectrumClient.connect()` to get a client that has already
    negotiated the protocol version; a successful handshake is what the
    readiness gate treats as "ready".
    """

    def __init__(self, host: str, port: int, timeout: float = DaemonTimeouts.CLIENT_SOCKET):
        """Open the TCP connection.

        Args:
            host: Server address
            port: Electrum RPC port
            timeout: Socket timeout for connect, send and receive

        Raises:
            OSError: If the connection cannot be established
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self._next_id = 0
        self._sock: socket.socket | None = socket.create_connection((host, port), timeout=timeout)
        self._reader = LineReader(self._sock)

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        timeout: float = DaemonTimeouts.CLIENT_SOCKET,
        protocol_version: str = DEFAULT_PROTOCOL,
    ) -> "ElectrumClient":
        """Connect and perform the `server.version` handshake.

        The connection is closed again if the handshake fails.
        """
        client = cls(host, port, timeout=timeout)
        try:
            client.server_version(protocol_version)
        except BaseException:
            client.close()
            raise
        return client

    @property
    def closed(self) -> bool:
        return self._sock is None

    def call(self, method: str, *params: Any) -> Any:
        """Send one request and return its result.

        Raises:
            ProtocolError: On framing errors or a closed client
            ElectrumError: If the server answered with an error
            OSError: On socket errors
        """
        if self._sock is None:
            raise ProtocolError("Client is closed")
        self._next_id += 1
        request = Request(method, list(params), request_id=self._next_id)
        send_message(self._sock, request)

        while True:
            line = self._reader.readline()
            if is_notification(line):
                logger.debug(f"Skipping notification: {line[:80]}")
                continue
            response = Response.from_json(line)
            if isinstance(response.id, int) and response.id < request.id:
                # Late reply to an earlier call that timed out.
                logger.debug(f"Dropping stale reply for request {response.id}")
                continue
            if response.id != request.id:
                raise ProtocolError(
                    f"Response id {response.id} does not match request id {request.id}"
                )
            return response.raise_for_error()

    def server_version(self, protocol_version: str = DEFAULT_PROTOCOL) -> list[str]:
        """Negotiate the protocol version.

        Returns:
            [server software version, negotiated protocol version]
        """
        result = self.call("server.version", CLIENT_NAME, protocol_version)
        if not isinstance(result, list) or len(result) != 2:
            raise ProtocolError(f"Unexpected server.version result: {result!r}")
        return result

    def ping(self) -> None:
        self.call("server.ping")

    def block_headers_subscribe(self) -> dict[str, Any]:
        """Subscribe to new headers; returns the current tip {"height", "hex"}."""
        return self.call("blockchain.headers.subscribe")

    def block_header_raw(self, height: int) -> bytes:
        """Return the serialized header at `height`."""
        return _decode_hex(self.call("blockchain.block.header", height), "block header")

    def transaction_get(self, txid: str) -> bytes:
        """Return the serialized transaction with the given id."""
        return _decode_hex(self.call("blockchain.transaction.get", txid), "transaction")

    def script_get_history(self, script: bytes) -> list[dict[str, Any]]:
        """Return the confirmed and mempool history of an output script."""
        return self.call("blockchain.scripthash.get_history", script_hash(script))

    def close(self) -> None:
        if self._sock is None:
            return
        with contextlib.suppress(OSError):
            self._sock.close()
        self._sock = None

    def __enter__(self) -> "ElectrumClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
