"""Mint receiving addresses for accounts."""

from __future__ import annotations

import logging

from feed_gate.rpc.adapter import RpcAdapter
from feed_gate.storage.models import Account

logger = logging.getLogger("feed_gate.payments.provisioner")


async def provision_address(adapter: RpcAdapter, account: Account) -> str:
    """Ask the node for a new address and record it on *account*.

    Recording is a set insertion, so an address the account already owns is
    left as-is.  The account is not persisted here.
    """
    address = await adapter.get_new_address()
    if address in account.addresses:
        logger.debug(f"Address {address} already recorded for {account.username}")
    else:
        account.addresses.add(address)
        logger.info(f"Provisioned address {address} for {account.username}")
    return address
