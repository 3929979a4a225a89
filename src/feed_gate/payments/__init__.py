"""Payment verification and settlement.

Balance aggregation across an account's addresses, address provisioning,
the monthly entitlement decision, and the monthly sweep of every known
address into the collection address.
"""

from feed_gate.payments.balance import aggregate_balance
from feed_gate.payments.gate import PaymentGate
from feed_gate.payments.provisioner import provision_address
from feed_gate.payments.schedule import next_sweep_at
from feed_gate.payments.sweeper import SettlementSweeper, SweepOutcome, SweepReport

__all__ = [
    "PaymentGate",
    "SettlementSweeper",
    "SweepOutcome",
    "SweepReport",
    "aggregate_balance",
    "next_sweep_at",
    "provision_address",
]
