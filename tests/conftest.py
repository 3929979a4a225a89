"""Shared fixtures: an in-process bitcoind stand-in behind httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from feed_gate.rpc.adapter import RpcAdapter

RPC_URL = "http://node.test:8332/"
RPC_USER = "root"
RPC_PASSWORD = "none"


def rpc_ok(result: Any) -> httpx.Response:
    return httpx.Response(200, json={"result": result, "error": None, "id": None})


def rpc_error(code: int, message: str) -> httpx.Response:
    return httpx.Response(
        500,
        json={"result": None, "error": {"code": code, "message": message}, "id": None},
    )


def undecodable() -> httpx.Response:
    """A response claiming gzip encoding whose streamed body is not gzip."""

    async def body():
        yield b"definitely not gzip"

    return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=body())


class FakeNode:
    """Minimal wallet node answering the RPCs the adapter issues.

    ``utxos`` maps each known address to its ``listunspent`` entries.
    ``overrides`` maps a method name to a canned response, an exception to
    raise, or a callable receiving the params.
    """

    def __init__(self) -> None:
        self.utxos: dict[str, list[dict]] = {}
        self.failing: set[str] = set()
        self.new_addresses: list[str] = []
        self.overrides: dict[str, Any] = {}
        self.calls: list[tuple[str, list]] = []
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request):
        payload = json.loads(request.content)
        method, params = payload["method"], payload["params"]
        self.calls.append((method, params))
        self.requests.append(request)

        override = self.overrides.get(method)
        if isinstance(override, BaseException):
            raise override
        if callable(override):
            return override(params)
        if override is not None:
            return override
        return getattr(self, f"_{method}")(params)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def params_of(self, method: str) -> list:
        return [params for name, params in self.calls if name == method]

    # -- default behaviour --------------------------------------------

    def _listunspent(self, params: list) -> httpx.Response:
        address = params[2][0]
        if address in self.failing:
            return rpc_error(-5, f"Invalid Bitcoin address: {address}")
        return rpc_ok(self.utxos.get(address, []))

    def _getaddressesbylabel(self, params: list) -> httpx.Response:
        return rpc_ok({addr: {"purpose": "receive"} for addr in self.utxos})

    def _getnewaddress(self, params: list) -> httpx.Response:
        if not self.new_addresses:
            return rpc_error(-12, "Error: Keypool ran out")
        address = self.new_addresses.pop(0)
        self.utxos.setdefault(address, [])
        return rpc_ok(address)

    def _createrawtransaction(self, params: list) -> httpx.Response:
        return rpc_ok("0200000001rawtx")

    def _signrawtransactionwithwallet(self, params: list) -> httpx.Response:
        return rpc_ok({"hex": f"{params[0]}-signed", "complete": True})

    def _sendrawtransaction(self, params: list) -> httpx.Response:
        return rpc_ok("f00dfeed" * 8)


def utxo(txid: str, vout: int, amount: float) -> dict:
    return {"txid": txid, "vout": vout, "amount": amount, "confirmations": 6}


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest_asyncio.fixture
async def adapter(node: FakeNode):
    rpc = RpcAdapter(RPC_URL, RPC_USER, RPC_PASSWORD, timeout=5.0, transport=node.transport())
    yield rpc
    await rpc.aclose()


@pytest.fixture
def make_adapter() -> Callable[[Callable], RpcAdapter]:
    """Build an adapter around an arbitrary (sync or async) request handler."""

    def _make(handler: Callable) -> RpcAdapter:
        return RpcAdapter(
            RPC_URL, RPC_USER, RPC_PASSWORD, transport=httpx.MockTransport(handler)
        )

    return _make
