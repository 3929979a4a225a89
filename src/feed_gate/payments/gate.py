"""Monthly entitlement decision."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from feed_gate.storage.models import Account


@dataclass(frozen=True)
class PaymentGate:
    """Decides whether an account may read the feed this month."""

    threshold: Decimal
    admin_username: str = "admin"

    def is_entitled(self, account: Account, balance: Decimal) -> bool:
        """True when *balance* meets the threshold, or for the admin account."""
        return balance >= self.threshold or account.username == self.admin_username
