"""JSON-RPC access to a bitcoind-compatible node.

Provides the async :class:`RpcAdapter` used by the payment engine, the
``Utxo`` value type, and the error taxonomy raised by every remote call.
"""

from feed_gate.rpc.adapter import RpcAdapter
from feed_gate.rpc.errors import (
    RemoteProtocolError,
    RemoteRejected,
    RpcError,
    TransportError,
)
from feed_gate.rpc.models import Utxo

__all__ = [
    "RpcAdapter",
    "RpcError",
    "RemoteProtocolError",
    "RemoteRejected",
    "TransportError",
    "Utxo",
]
