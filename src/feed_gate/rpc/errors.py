"""Errors raised by :class:`~feed_gate.rpc.adapter.RpcAdapter`."""

from __future__ import annotations


class RpcError(Exception):
    """Base class for every failure of a remote procedure call."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.message = message


class TransportError(RpcError):
    """The node could not be reached, or the call timed out."""


class RemoteProtocolError(RpcError):
    """The node answered with a body of an unexpected shape."""

    def __init__(self, method: str, message: str, status_code: int | None = None) -> None:
        super().__init__(method, message)
        self.status_code = status_code


class RemoteRejected(RpcError):
    """The node answered with a non-null ``error`` field."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        super().__init__(method, message)
        self.code = code
