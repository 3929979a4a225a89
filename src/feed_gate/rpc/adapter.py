"""Async JSON-RPC adapter for a bitcoind-compatible node.

Every public method is one independent ``POST`` to the configured endpoint,
authenticated with HTTP basic auth and bounded by the request timeout.  The
adapter keeps a single pooled :class:`httpx.AsyncClient` and no other state,
so one instance can be shared by any number of concurrent callers.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Sequence

import httpx

from feed_gate.rpc.errors import RemoteProtocolError, RemoteRejected, TransportError
from feed_gate.rpc.models import Utxo, format_amount

if TYPE_CHECKING:
    from feed_gate.config import RpcConfig

logger = logging.getLogger("feed_gate.rpc.adapter")

DEFAULT_MIN_CONFIRMATIONS = 1
DEFAULT_MAX_CONFIRMATIONS = 9_999_999


class RpcAdapter:
    """Client for the fixed set of wallet RPCs the payment engine needs.

    Parameters
    ----------
    url:
        The node's RPC endpoint, e.g. ``http://127.0.0.1:8332/``.
    username, password:
        Credentials sent as HTTP basic auth on every call.
    timeout:
        Per-request timeout in seconds.  A timed-out call raises
        :class:`TransportError`, exactly like a refused connection.
    transport:
        Optional ``httpx`` transport, used to point the adapter at an
        in-process fake node.
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
        min_confirmations: int = DEFAULT_MIN_CONFIRMATIONS,
        max_confirmations: int = DEFAULT_MAX_CONFIRMATIONS,
        address_label: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.min_confirmations = min_confirmations
        self.max_confirmations = max_confirmations
        self.address_label = address_label
        self._client = httpx.AsyncClient(
            auth=httpx.BasicAuth(username, password),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_config(
        cls,
        config: RpcConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RpcAdapter:
        """Build an adapter from the ``rpc`` section of the gateway config."""
        return cls(
            config.url,
            config.username,
            config.password,
            timeout=config.timeout_seconds,
            min_confirmations=config.min_confirmations,
            max_confirmations=config.max_confirmations,
            address_label=config.address_label,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the pooled HTTP connections."""
        await self._client.aclose()

    async def __aenter__(self) -> RpcAdapter:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: list) -> Any:
        """Issue one RPC and return its ``result`` member.

        Raises :class:`RemoteRejected` when the node reports an error, so
        callers only have to validate the shape of the result.
        """
        body = json.dumps({"jsonrpc": "1.0", "method": method, "params": params})
        logger.debug(f"-> {method} {params!r}")
        try:
            resp = await self._client.post(self.url, content=body)
        except httpx.TransportError as exc:
            raise TransportError(method, str(exc) or type(exc).__name__) from exc
        except httpx.RequestError as exc:
            # undecodable body, redirect loop
            raise RemoteProtocolError(method, str(exc) or type(exc).__name__) from exc

        # bitcoind answers RPC errors with HTTP 500 and a JSON body, so the
        # status code is only reported, never used to decide success.
        try:
            data = json.loads(resp.content, parse_float=Decimal)
        except ValueError as exc:
            raise RemoteProtocolError(
                method,
                f"response is not JSON (HTTP {resp.status_code})",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise RemoteProtocolError(
                method,
                f"expected a JSON object, got {type(data).__name__}",
                status_code=resp.status_code,
            )

        error = data.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RemoteRejected(
                    method, str(error.get("message", error)), code=error.get("code")
                )
            raise RemoteRejected(method, str(error))
        return data.get("result")

    # ------------------------------------------------------------------
    # Addresses and balances
    # ------------------------------------------------------------------

    async def list_unspent(self, address: str) -> Iterator[Utxo]:
        """Return the unspent outputs held by *address*.

        Only outputs with a positive amount are yielded.  The returned
        iterator is single-pass.
        """
        if not address:
            raise ValueError("address must be non-empty")
        result = await self._call(
            "listunspent",
            [self.min_confirmations, self.max_confirmations, [address]],
        )
        if not isinstance(result, list):
            raise RemoteProtocolError(
                "listunspent",
                f"expected an array of unspent outputs, got {type(result).__name__}",
            )
        return _iter_utxos(result)

    async def get_address_balance(self, address: str) -> Decimal:
        """Sum the unspent amounts of *address*; ``0`` when it holds nothing."""
        total = Decimal(0)
        for utxo in await self.list_unspent(address):
            total += utxo.amount
        return total

    async def list_addresses(self) -> Iterator[str]:
        """Return every address the node's wallet knows under the configured label."""
        result = await self._call("getaddressesbylabel", [self.address_label])
        if not isinstance(result, dict):
            raise RemoteProtocolError(
                "getaddressesbylabel",
                f"expected an object keyed by address, got {type(result).__name__}",
            )
        return iter(list(result.keys()))

    async def get_new_address(self) -> str:
        """Ask the node's wallet for a fresh receiving address."""
        params = [self.address_label] if self.address_label else []
        result = await self._call("getnewaddress", params)
        if isinstance(result, str):
            return result
        raise RemoteProtocolError(
            "getnewaddress", "response carried neither an address nor an error"
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_raw_transaction(
        self,
        inputs: Sequence[Utxo],
        outputs: Mapping[str, Decimal],
    ) -> str:
        """Build an unsigned transaction spending *inputs* into *outputs*.

        Returns the transaction as hex.
        """
        if not inputs:
            raise ValueError("a transaction needs at least one input")
        params = [
            [utxo.as_input() for utxo in inputs],
            [{address: format_amount(amount)} for address, amount in outputs.items()],
        ]
        result = await self._call("createrawtransaction", params)
        if not isinstance(result, str):
            raise RemoteProtocolError(
                "createrawtransaction", "response carried no transaction hex"
            )
        return result

    async def sign_transaction(self, tx_hex: str) -> str:
        """Sign *tx_hex* with the node's wallet keys and return the signed hex."""
        result = await self._call("signrawtransactionwithwallet", [tx_hex])
        if not isinstance(result, dict) or not isinstance(result.get("hex"), str):
            raise RemoteProtocolError(
                "signrawtransactionwithwallet", "response carried no signed hex"
            )
        if result.get("complete") is False:
            reason = "transaction is not completely signed"
            errors = result.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                reason = errors[0].get("error", reason)
            raise RemoteRejected("signrawtransactionwithwallet", str(reason))
        return result["hex"]

    async def send_transaction(self, signed_hex: str) -> str | None:
        """Broadcast *signed_hex*.

        Success is the absence of an error; the txid is returned when the
        node supplies one.
        """
        result = await self._call("sendrawtransaction", [signed_hex])
        return result if isinstance(result, str) else None


def _iter_utxos(entries: list) -> Iterator[Utxo]:
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("vout"), int):
            raise RemoteProtocolError("listunspent", f"malformed unspent output: {entry!r}")
        amount = entry.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
            continue
        if amount > 0:
            yield Utxo(txid=str(entry.get("txid", "")), vout=entry["vout"], amount=Decimal(amount))
