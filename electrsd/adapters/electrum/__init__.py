"""Electrum protocol client used to talk to electrs."""

from electrsd.adapters.electrum.client import ElectrumClient, script_hash
from electrsd.adapters.electrum.protocol import ElectrumError, ProtocolError

__all__ = ["ElectrumClient", "ElectrumError", "ProtocolError", "script_hash"]
