"""Electrum protocol framing.

JSON-RPC 2.0 messages over TCP, one message per line. Unlike a plain
request/response socket, the server may push subscription notifications
(messages with a "method" and no "id") at any time, so readers must skip
them while waiting for a reply.
"""

import json
import logging
import socket
from typing import Any

from electrsd.ports.clients import ClientError

logger = logging.getLogger(__name__)

MAX_LINE = 16 * 1024 * 1024


class ProtocolError(ClientError):
    """Transport or framing error (bad JSON, connection closed, id mismatch)."""

    pass


class ElectrumError(ClientError):
    """The server answered with an error object.

    Attributes:
        code: JSON-RPC error code, if the server sent one
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class Request:
    """Electrum request message."""

    def __init__(self, method: str, params: list[Any] | None = None, request_id: int = 1):
        """Create a request.

        Args:
            method: Method name (e.g., "server.version")
            params: Positional parameters
            request_id: Request ID for matching responses
        """
        self.method = method
        self.params = params or []
        self.id = request_id

    def to_json(self) -> str:
        """Serialize to JSON string with newline."""
        data = {"jsonrpc": "2.0", "method": self.method, "params": self.params, "id": self.id}
        return json.dumps(data) + "\n"

    @classmethod
    def from_json(cls, line: str) -> "Request":
        """Deserialize from JSON string.

        Raises:
            ProtocolError: If JSON is invalid or missing required fields
        """
        data = _load_object(line)
        if "method" not in data:
            raise ProtocolError("Request missing 'method' field")
        params = data.get("params") or []
        if not isinstance(params, list):
            raise ProtocolError("Request 'params' must be a list")
        return cls(method=data["method"], params=params, request_id=data.get("id", 1))


class Response:
    """Electrum response message."""

    def __init__(
        self,
        result: Any = None,
        error: dict[str, Any] | None = None,
        request_id: int | None = 1,
    ):
        self.result = result
        self.error = error
        self.id = request_id

    def to_json(self) -> str:
        """Serialize to JSON string with newline."""
        data: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            data["error"] = self.error
        else:
            data["result"] = self.result
        return json.dumps(data) + "\n"

    @classmethod
    def from_json(cls, line: str) -> "Response":
        """Deserialize from JSON string.

        Raises:
            ProtocolError: If JSON is invalid
        """
        data = _load_object(line)
        return cls(result=data.get("result"), error=data.get("error"), request_id=data.get("id"))

    @classmethod
    def success(cls, result: Any, request_id: int = 1) -> "Response":
        """Create a success response."""
        return cls(result=result, error=None, request_id=request_id)

    @classmethod
    def failure(cls, code: int, message: str, request_id: int = 1) -> "Response":
        """Create an error response."""
        return cls(error={"code": code, "message": message}, request_id=request_id)

    def is_error(self) -> bool:
        """Check if this response is an error."""
        return self.error is not None

    def raise_for_error(self) -> Any:
        """Return the result, or raise ElectrumError for an error response."""
        if self.error is None:
            return self.result
        if isinstance(self.error, dict):
            raise ElectrumError(str(self.error.get("message", self.error)), self.error.get("code"))
        raise ElectrumError(str(self.error))


def is_notification(line: str) -> bool:
    """Check whether a line is a server push rather than a reply."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return False
    return isinstance(data, dict) and "method" in data and data.get("id") is None


def _load_object(line: str) -> dict[str, Any]:
    try:
        data = json.loads(line.strip())
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    return data


class LineReader:
    """Buffered reader splitting a socket stream into lines.

    Keeps bytes following a newline for the next call, since a server may
    send several messages in one segment.
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buffer = b""

    def readline(self) -> str:
        """Read one line, without its newline.

        Raises:
            ProtocolError: If the connection closes or the line is too long
            OSError: On socket errors (including timeouts)
        """
        while b"\n" not in self._buffer:
            if len(self._buffer) > MAX_LINE:
                raise ProtocolError(f"Line exceeds {MAX_LINE} bytes")
            chunk = self.sock.recv(4096)
            if not chunk:
                raise ProtocolError("Connection closed")
            self._buffer += chunk
        line, self._buffer = self._buffer.split(b"\n", 1)
        try:
            return line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8: {e}") from e


def send_message(sock: socket.socket, message: Request | Response) -> None:
    """Send a message over a socket.

    Raises:
        OSError: If the send fails
    """
    sock.sendall(message.to_json().encode("utf-8"))
