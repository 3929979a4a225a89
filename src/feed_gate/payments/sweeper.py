"""Monthly settlement sweep.

Once a month every unspent output held by any address the node's wallet
knows is spent into the collection address in a single transaction.  A
cycle runs four strictly sequential phases -- collect, build, sign,
broadcast -- and each phase consumes what the previous one produced.

A cycle never raises an :class:`~feed_gate.rpc.errors.RpcError`: failures
are logged and reported in the returned :class:`SweepReport`, and the
scheduler re-arms for the next month whatever the outcome.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from feed_gate.payments.schedule import next_sweep_at, seconds_until
from feed_gate.rpc.errors import RpcError
from feed_gate.rpc.models import Utxo

if TYPE_CHECKING:
    from feed_gate.config import GatewayConfig
    from feed_gate.rpc.adapter import RpcAdapter

logger = logging.getLogger("feed_gate.payments.sweeper")


class SweepPhase(str, Enum):
    COLLECT = "collect"
    BUILD = "build"
    SIGN = "sign"
    BROADCAST = "broadcast"


class SweepOutcome(str, Enum):
    IDLE = "idle"              # nothing worth sweeping this cycle
    BROADCAST = "broadcast"
    FAILED = "failed"


@dataclass
class SettlementBatch:
    """Every unspent output found during one cycle, with their total."""

    utxos: list[Utxo] = field(default_factory=list)
    total: Decimal = Decimal(0)

    def extend(self, utxos: list[Utxo]) -> None:
        for utxo in utxos:
            self.utxos.append(utxo)
            self.total += utxo.amount


@dataclass
class SweepReport:
    """What one cycle did."""

    started_at: datetime
    outcome: SweepOutcome = SweepOutcome.IDLE
    address_count: int = 0
    dropped_addresses: list[str] = field(default_factory=list)
    utxo_count: int = 0
    total: Decimal = Decimal(0)
    payout: Decimal = Decimal(0)
    txid: str | None = None
    failed_phase: SweepPhase | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not SweepOutcome.FAILED


class SettlementSweeper:
    """Sweeps all known addresses into *collection_address* once a month.

    Parameters
    ----------
    adapter:
        Shared RPC adapter.
    collection_address:
        Destination of every sweep.
    network_fee:
        Flat fee deducted from the swept total.
    tz:
        Timezone in which month boundaries are computed.
    clock, sleep:
        Injectable time sources; default to the wall clock and
        :func:`asyncio.sleep`.
    """

    def __init__(
        self,
        adapter: RpcAdapter,
        collection_address: str,
        network_fee: Decimal,
        *,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not collection_address:
            raise ValueError("a collection address is required to sweep funds")
        self.adapter = adapter
        self.collection_address = collection_address
        self.network_fee = network_fee
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.next_run_at: datetime | None = None
        self.last_report: SweepReport | None = None

    @classmethod
    def from_config(cls, adapter: RpcAdapter, config: GatewayConfig) -> SettlementSweeper:
        return cls(
            adapter,
            config.payments.collection_address,
            config.payments.network_fee,
            tz=config.sweep.tzinfo,
        )

    def _now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def collect(self, report: SweepReport) -> SettlementBatch:
        """Gather the unspent outputs of every known address.

        Addresses whose query fails are dropped for this cycle; their funds
        are picked up by the next one.
        """
        addresses = list(await self.adapter.list_addresses())
        report.address_count = len(addresses)

        results = await asyncio.gather(
            *(self._list_unspent(addr) for addr in addresses),
            return_exceptions=True,
        )

        batch = SettlementBatch()
        for addr, result in zip(addresses, results):
            if isinstance(result, BaseException):
                if not isinstance(result, (RpcError, ValueError)):
                    raise result
                logger.warning(f"Skipping {addr} this cycle: {result}")
                report.dropped_addresses.append(addr)
                continue
            batch.extend(result)
        return batch

    async def _list_unspent(self, address: str) -> list[Utxo]:
        return list(await self.adapter.list_unspent(address))

    async def _build(self, batch: SettlementBatch) -> str:
        payout = batch.total - self.network_fee
        return await self.adapter.create_raw_transaction(
            batch.utxos, {self.collection_address: payout}
        )

    async def _sign(self, tx_hex: str) -> str:
        return await self.adapter.sign_transaction(tx_hex)

    async def _broadcast(self, signed_hex: str) -> str | None:
        return await self.adapter.send_transaction(signed_hex)

    async def run_cycle(self) -> SweepReport:
        """Run collect, build, sign and broadcast once and report the result."""
        report = SweepReport(started_at=self._now())
        logger.info(f"Settlement sweep started at {report.started_at.isoformat()}")

        try:
            batch = await self.collect(report)
        except RpcError as exc:
            return self._fail(report, SweepPhase.COLLECT, exc)

        report.utxo_count = len(batch.utxos)
        report.total = batch.total
        if not batch.utxos:
            logger.info("No unspent outputs found; nothing to sweep.")
            return report

        report.payout = batch.total - self.network_fee
        if report.payout <= 0:
            logger.warning(
                f"Swept total {batch.total} does not cover the {self.network_fee} fee; "
                "leaving funds in place."
            )
            return report

        pipeline = (
            (SweepPhase.BUILD, self._build),
            (SweepPhase.SIGN, self._sign),
            (SweepPhase.BROADCAST, self._broadcast),
        )
        payload: Any = batch
        for phase, step in pipeline:
            try:
                payload = await step(payload)
            except RpcError as exc:
                return self._fail(report, phase, exc)

        report.outcome = SweepOutcome.BROADCAST
        report.txid = payload
        logger.info(
            f"Swept {report.utxo_count} outputs ({report.total} BTC) to "
            f"{self.collection_address}: paid {report.payout} BTC, txid={report.txid}"
        )
        return report

    def _fail(self, report: SweepReport, phase: SweepPhase, exc: RpcError) -> SweepReport:
        report.outcome = SweepOutcome.FAILED
        report.failed_phase = phase
        report.error = str(exc)
        logger.error(f"Settlement sweep failed during {phase.value}: {exc}")
        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Sleep until each month boundary, sweep, and re-arm, until cancelled."""
        last_boundary: datetime | None = None
        while True:
            now = self._now()
            if last_boundary is not None and now <= last_boundary:
                now = last_boundary
            target = next_sweep_at(now)
            self.next_run_at = target
            delay = max(seconds_until(target, self._now()), 0.0)
            logger.info(
                f"Next settlement sweep at {target.isoformat()} "
                f"(in {delay / 86400:.2f} days)"
            )
            await self._sleep(delay)
            last_boundary = target

            try:
                self.last_report = await self.run_cycle()
            except Exception:
                # The schedule re-arms whatever happened in the cycle.
                logger.exception("Settlement sweep crashed; re-arming for next month.")

    def start(self) -> asyncio.Task:
        """Run :meth:`run_forever` as a background task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="settlement-sweeper")
        return self._task

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
