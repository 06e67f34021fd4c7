"""JSON-RPC client for tapyrusd.

tapyrusd serves JSON-RPC over HTTP with basic auth. Credentials come from
the cookie file the daemon writes into its data directory on startup.
"""

import logging
from pathlib import Path
from typing import Any

import requests

from electrsd.domain.timeouts import DaemonTimeouts
from electrsd.ports.clients import ClientError

logger = logging.getLogger(__name__)


class RpcError(ClientError):
    """tapyrusd answered with a JSON-RPC error, or not with JSON-RPC at all.

    Attributes:
        code: JSON-RPC error code, None for transport-level failures
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


def read_cookie(cookie_file: Path) -> tuple[str, str]:
    """Read "user:password" credentials from a cookie file.

    Raises:
        OSError: If the file does not exist (yet)
        RpcError: If the content is malformed
    """
    content = cookie_file.read_text(encoding="utf-8").strip()
    user, sep, password = content.partition(":")
    if not sep:
        raise RpcError(f"Malformed cookie file {cookie_file}")
    return user, password


class RpcClient:
    """Synchronous JSON-RPC client backed by a requests session."""

    def __init__(
        self,
        url: str,
        cookie_file: Path | None = None,
        auth: tuple[str, str] | None = None,
        timeout: float = DaemonTimeouts.CLIENT_SOCKET,
    ):
        """Initialize client.

        Args:
            url: Endpoint, e.g. "http://127.0.0.1:18443"
            cookie_file: Cookie to authenticate with, read on every call so a
                         restarted daemon's new cookie is picked up
            auth: Explicit (user, password), used when no cookie is given
            timeout: HTTP timeout
        """
        self.url = url
        self.cookie_file = cookie_file
        self.auth = auth
        self.timeout = timeout
        self._session = requests.Session()
        self._next_id = 0

    @classmethod
    def connect(
        cls,
        url: str,
        cookie_file: Path | None = None,
        auth: tuple[str, str] | None = None,
        timeout: float = DaemonTimeouts.CLIENT_SOCKET,
    ) -> "RpcClient":
        """Create a client and check tapyrusd answers `getblockchaininfo`."""
        client = cls(url, cookie_file=cookie_file, auth=auth, timeout=timeout)
        try:
            client.ping()
        except BaseException:
            client.close()
            raise
        return client

    def _credentials(self) -> tuple[str, str] | None:
        if self.cookie_file is not None:
            return read_cookie(self.cookie_file)
        return self.auth

    def call(self, method: str, *params: Any) -> Any:
        """Invoke an RPC method.

        Raises:
            OSError: If the cookie is missing or the connection fails
            RpcError: On JSON-RPC errors or non-JSON answers
        """
        self._next_id += 1
        payload = {"jsonrpc": "1.0", "id": self._next_id, "method": method, "params": list(params)}
        try:
            response = self._session.post(
                self.url, json=payload, auth=self._credentials(), timeout=self.timeout
            )
        except requests.ConnectionError as e:
            raise ConnectionError(f"Cannot reach {self.url}: {e}") from e
        except requests.Timeout as e:
            raise TimeoutError(f"Timed out calling {method} on {self.url}") from e
        except requests.RequestException as e:
            raise RpcError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(
                f"{method} returned HTTP {response.status_code} without JSON body"
            ) from e

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            raise RpcError(f"{method}: {error.get('message', error)}", code=error.get("code"))
        if error:
            raise RpcError(f"{method}: {error}")
        if not isinstance(data, dict) or "result" not in data:
            raise RpcError(f"{method} returned an invalid response: {data!r}")
        return data["result"]

    def ping(self) -> None:
        self.get_blockchain_info()

    def get_blockchain_info(self) -> dict[str, Any]:
        return self.call("getblockchaininfo")

    def get_block_count(self) -> int:
        return self.call("getblockcount")

    def get_new_address(self, label: str | None = None) -> str:
        return self.call("getnewaddress") if label is None else self.call("getnewaddress", label)

    def generate_to_address(self, blocks: int, address: str, private_key: str) -> list[str]:
        """Mine `blocks` blocks to `address`, signed with the network's signer key."""
        return self.call("generatetoaddress", blocks, address, private_key)

    def send_to_address(self, address: str, amount: float) -> str:
        return self.call("sendtoaddress", address, amount)

    def stop(self) -> None:
        self.call("stop")

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
