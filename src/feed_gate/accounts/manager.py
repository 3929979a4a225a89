"""High-level account manager used by the gateway and CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from feed_gate.accounts.credentials import hash_password, new_salt, verify_password
from feed_gate.payments.balance import aggregate_balance
from feed_gate.payments.gate import PaymentGate
from feed_gate.payments.provisioner import provision_address
from feed_gate.rpc.adapter import RpcAdapter
from feed_gate.storage.database import KeyValueStore
from feed_gate.storage.models import Account, account_key

logger = logging.getLogger("feed_gate.accounts.manager")


class AccountError(Exception):
    """Base class for account lifecycle failures."""


class AccountExistsError(AccountError):
    pass


class AccountNotFoundError(AccountError):
    pass


class InvalidCredentialsError(AccountError):
    pass


@dataclass(frozen=True)
class AccountOverview:
    """Balance and entitlement snapshot shown to an account holder."""

    username: str
    balance: Decimal
    addresses: list[str]
    entitled: bool
    balance_insufficient: bool


class AccountManager:
    """Orchestrates the keyed store, the RPC adapter and the payment gate.

    RPC errors raised while provisioning or aggregating propagate unchanged.
    """

    def __init__(self, store: KeyValueStore, adapter: RpcAdapter, gate: PaymentGate) -> None:
        self.store = store
        self.adapter = adapter
        self.gate = gate

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def get(self, username: str) -> Account:
        """Load an account. Raises :class:`AccountNotFoundError`."""
        raw = await self.store.get(account_key(username))
        if raw is None:
            raise AccountNotFoundError(f"Account '{username}' does not exist.")
        return Account.from_bytes(raw)

    async def save(self, account: Account) -> None:
        await self.store.put(account.key, account.to_bytes())

    async def authenticate(self, username: str, password: str) -> Account:
        """Load an account and check its password."""
        account = await self.get(username)
        if not verify_password(password, account.salt, account.password_hash):
            raise InvalidCredentialsError("Invalid username/password combination.")
        return account

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def register(self, username: str, password: str) -> AccountOverview:
        """Create an account with its first address and return its overview."""
        if not username.strip():
            raise ValueError("username must not be empty")
        if await self.store.contains(account_key(username)):
            raise AccountExistsError(f"Account '{username}' already exists.")

        salt = new_salt()
        account = Account(
            username=username,
            password_hash=hash_password(password, salt),
            salt=salt,
        )
        await provision_address(self.adapter, account)
        await self.save(account)
        logger.info(f"Registered account {username}")
        return await self.overview(account)

    async def login(self, username: str, password: str) -> AccountOverview:
        account = await self.authenticate(username, password)
        return await self.overview(account)

    async def new_address(self, username: str, password: str) -> AccountOverview:
        """Provision one more address for an account and persist it."""
        account = await self.authenticate(username, password)
        await provision_address(self.adapter, account)
        await self.save(account)
        return await self.overview(account)

    async def overview(self, account: Account) -> AccountOverview:
        balance = await aggregate_balance(self.adapter, account.addresses)
        return AccountOverview(
            username=account.username,
            balance=balance,
            addresses=sorted(account.addresses),
            entitled=self.gate.is_entitled(account, balance),
            balance_insufficient=balance < self.gate.threshold,
        )
