"""Gateway - the top-level orchestrator of the payment engine."""

from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path

import httpx

from feed_gate.accounts.manager import AccountManager
from feed_gate.config import GatewayConfig, get_config_dir, load_config, save_config
from feed_gate.payments.balance import aggregate_balance
from feed_gate.payments.gate import PaymentGate
from feed_gate.payments.sweeper import SettlementSweeper
from feed_gate.rpc.adapter import RpcAdapter
from feed_gate.storage.database import KeyValueStore, get_store

logger = logging.getLogger("feed_gate.gateway")


class Gateway:
    """One deployment: config, node adapter, account store and sweeper.

    The adapter is shared by the account manager and the sweeper; it is the
    only resource they have in common.
    """

    def __init__(
        self,
        config: GatewayConfig,
        config_dir: Path,
        store: KeyValueStore,
        adapter: RpcAdapter,
    ):
        self.config = config
        self.config_dir = config_dir
        self.store = store
        self.adapter = adapter
        self.gate = PaymentGate(
            threshold=config.payments.monthly_threshold,
            admin_username=config.payments.admin_username,
        )
        self.accounts = AccountManager(store, adapter, self.gate)
        self._sweeper: SettlementSweeper | None = None

    @classmethod
    async def load(
        cls,
        base_path: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Gateway:
        """Load an existing deployment from a ``.feed-gate`` directory."""
        config_dir = get_config_dir(base_path)
        config_path = config_dir / "config.yaml"

        if not config_path.exists():
            raise FileNotFoundError(
                f"No configuration found at {config_path}. Run 'feed-gate init' first."
            )

        config = load_config(config_path)
        return await cls._open(config, config_dir, transport)

    @classmethod
    async def init(cls, base_path: Path | None = None) -> Gateway:
        """Write a default configuration and open the deployment."""
        config_dir = get_config_dir(base_path, create=True)
        config = GatewayConfig()
        save_config(config, config_dir / "config.yaml")
        return await cls._open(config, config_dir, None)

    @classmethod
    async def _open(
        cls,
        config: GatewayConfig,
        config_dir: Path,
        transport: httpx.AsyncBaseTransport | None,
    ) -> Gateway:
        store = get_store(config_dir, config.storage.path)
        await store.connect()
        adapter = RpcAdapter.from_config(config.rpc, transport=transport)
        return cls(config=config, config_dir=config_dir, store=store, adapter=adapter)

    @property
    def sweeper(self) -> SettlementSweeper:
        """The settlement sweeper, built on first use.

        Raises ``ValueError`` when no collection address is configured.
        """
        if self._sweeper is None:
            self._sweeper = SettlementSweeper.from_config(self.adapter, self.config)
        return self._sweeper

    async def balance_of(self, addresses: list[str]) -> Decimal:
        return await aggregate_balance(self.adapter, addresses)

    def start_sweeper(self) -> bool:
        """Arm the monthly sweep in the background if it is enabled.

        Returns whether the sweeper was started.
        """
        if not self.config.sweep.enabled:
            logger.info("Settlement sweep disabled in config.")
            return False
        self.sweeper.start()
        return True

    async def shutdown(self) -> None:
        """Clean shutdown."""
        if self._sweeper is not None:
            await self._sweeper.stop()
        await self.adapter.aclose()
        await self.store.close()
