"""JSON-RPC client used to talk to tapyrusd."""

from electrsd.adapters.rpc.client import RpcClient, RpcError, read_cookie

__all__ = ["RpcClient", "RpcError", "read_cookie"]
