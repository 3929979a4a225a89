"""Value types decoded from node responses."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal


@dataclass(frozen=True)
class Utxo:
    """An unspent transaction output held by one address."""

    txid: str
    vout: int
    amount: Decimal

    def as_input(self) -> dict:
        """Return the ``{txid, vout}`` reference used by ``createrawtransaction``."""
        return {"txid": self.txid, "vout": self.vout}


SATOSHI = Decimal("0.00000001")


def format_amount(amount: Decimal) -> str:
    """Render *amount* with satoshi precision, e.g. ``"0.00992500"``.

    bitcoind accepts amounts as JSON strings, which keeps the value exact on
    the wire.
    """
    return f"{amount.quantize(SATOSHI, rounding=ROUND_HALF_EVEN):f}"
