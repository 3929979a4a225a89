"""Unit tests for the settlement sweeper.

Coverage:
- Idle cycles (no outputs, dust below the fee)
- Concurrent per-address collection, skipping unreadable addresses
- Full collect -> build -> sign -> broadcast run
- Phase failures stop the pipeline
- Scheduling re-arms after failed and crashed cycles
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from feed_gate.payments.sweeper import SettlementSweeper, SweepOutcome, SweepPhase, SweepReport
from tests.conftest import rpc_error, rpc_ok, undecodable, utxo

DEST = "bc1qcollection"
FEE = Decimal("0.000075")


@pytest.fixture
def sweeper(adapter):
    return SettlementSweeper(adapter, DEST, FEE)


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_no_outputs_is_idle(self, node, sweeper):
        node.utxos = {"a": [], "b": []}

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.IDLE
        assert report.ok
        assert report.address_count == 2
        assert "createrawtransaction" not in node.methods()

    @pytest.mark.asyncio
    async def test_no_addresses_is_idle(self, node, sweeper):
        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.IDLE
        assert node.methods() == ["getaddressesbylabel"]

    @pytest.mark.asyncio
    async def test_sweeps_three_addresses_minus_fee(self, node, sweeper):
        node.utxos = {
            "a": [utxo("tx1", 0, 0.004)],
            "b": [utxo("tx2", 1, 0.003), utxo("tx3", 0, 0.001)],
            "c": [utxo("tx4", 2, 0.002)],
        }

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.BROADCAST
        assert report.total == Decimal("0.010")
        assert report.payout == Decimal("0.009925")
        assert report.utxo_count == 4
        assert report.txid == "f00dfeed" * 8

        [(inputs, outputs)] = node.params_of("createrawtransaction")
        assert sorted((i["txid"], i["vout"]) for i in inputs) == [
            ("tx1", 0), ("tx2", 1), ("tx3", 0), ("tx4", 2),
        ]
        assert len(outputs) == 1
        assert list(outputs[0]) == [DEST]
        assert Decimal(outputs[0][DEST]) == Decimal("0.009925")

    @pytest.mark.asyncio
    async def test_phases_run_in_order_and_chain_payloads(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 1)]}

        await sweeper.run_cycle()

        assert node.methods() == [
            "getaddressesbylabel",
            "listunspent",
            "createrawtransaction",
            "signrawtransactionwithwallet",
            "sendrawtransaction",
        ]
        assert node.params_of("signrawtransactionwithwallet") == [["0200000001rawtx"]]
        assert node.params_of("sendrawtransaction") == [["0200000001rawtx-signed"]]

    @pytest.mark.asyncio
    async def test_sign_failure_never_broadcasts(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 1)]}
        node.overrides["signrawtransactionwithwallet"] = lambda params: rpc_error(-13, "wallet locked")

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.FAILED
        assert report.failed_phase is SweepPhase.SIGN
        assert "wallet locked" in report.error
        assert "sendrawtransaction" not in node.methods()

    @pytest.mark.asyncio
    async def test_build_failure_never_signs(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 1)]}
        node.overrides["createrawtransaction"] = lambda params: rpc_error(-8, "Invalid amount")

        report = await sweeper.run_cycle()

        assert report.failed_phase is SweepPhase.BUILD
        assert "signrawtransactionwithwallet" not in node.methods()

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_reported(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 1)]}
        node.overrides["sendrawtransaction"] = lambda params: rpc_error(-26, "min relay fee not met")

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.FAILED
        assert report.failed_phase is SweepPhase.BROADCAST
        assert report.txid is None

    @pytest.mark.asyncio
    async def test_failed_address_is_skipped(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 0.5)], "broken": [utxo("tx2", 0, 0.5)]}
        node.failing.add("broken")

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.BROADCAST
        assert report.dropped_addresses == ["broken"]
        assert report.total == Decimal("0.5")
        [(inputs, _)] = node.params_of("createrawtransaction")
        assert inputs == [{"txid": "tx1", "vout": 0}]

    @pytest.mark.asyncio
    async def test_undecodable_address_is_skipped(self, node, sweeper):
        node.utxos = {"good": [utxo("tx1", 0, 1)], "bad": [utxo("tx2", 0, 1)]}
        node.overrides["listunspent"] = lambda params: (
            undecodable() if params[2][0] == "bad" else node._listunspent(params)
        )

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.BROADCAST
        assert report.dropped_addresses == ["bad"]
        assert report.total == Decimal("1")

    @pytest.mark.asyncio
    async def test_addresses_are_collected_concurrently(self, make_adapter):
        addresses = ["a", "b", "c"]
        arrived: list[str] = []
        all_arrived = asyncio.Event()

        async def handler(request: httpx.Request):
            body = json.loads(request.content)
            if body["method"] == "getaddressesbylabel":
                return rpc_ok({addr: {"purpose": "receive"} for addr in addresses})
            if body["method"] == "listunspent":
                address = body["params"][2][0]
                arrived.append(address)
                if len(arrived) == len(addresses):
                    all_arrived.set()
                # a sequential collect never gets past the first address
                await all_arrived.wait()
                return rpc_ok([utxo(f"tx-{address}", 0, 0.001)])
            return rpc_ok("0200000001rawtx")

        rpc = make_adapter(handler)
        try:
            sweeper = SettlementSweeper(rpc, DEST, FEE)
            batch = await asyncio.wait_for(
                sweeper.collect(SweepReport(started_at=datetime.now(timezone.utc))),
                timeout=2.0,
            )
        finally:
            await rpc.aclose()

        assert sorted(arrived) == addresses
        assert batch.total == Decimal("0.003")

    @pytest.mark.asyncio
    async def test_address_listing_failure_fails_collect(self, node, sweeper):
        node.overrides["getaddressesbylabel"] = lambda params: rpc_error(-18, "No wallet is loaded")

        report = await sweeper.run_cycle()

        assert report.failed_phase is SweepPhase.COLLECT
        assert node.methods() == ["getaddressesbylabel"]

    @pytest.mark.asyncio
    async def test_total_below_fee_is_left_in_place(self, node, sweeper):
        node.utxos = {"a": [utxo("tx1", 0, 0.00005)]}

        report = await sweeper.run_cycle()

        assert report.outcome is SweepOutcome.IDLE
        assert report.utxo_count == 1
        assert "createrawtransaction" not in node.methods()


class TestConstruction:

    def test_collection_address_required(self, adapter):
        with pytest.raises(ValueError):
            SettlementSweeper(adapter, "", FEE)


class FakeClock:
    """Wall clock that only moves when the sweeper sleeps."""

    def __init__(self, start: datetime, max_sleeps: int) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self.max_sleeps = max_sleeps

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, delay: float) -> None:
        if len(self.sleeps) == self.max_sleeps:
            raise asyncio.CancelledError
        self.sleeps.append(delay)
        self.now += timedelta(seconds=delay)


class TestSchedule:

    @pytest.mark.asyncio
    async def test_sleeps_until_each_month_boundary(self, node, adapter):
        clock = FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc), max_sleeps=3)
        sweeper = SettlementSweeper(adapter, DEST, FEE, clock=clock, sleep=clock.sleep)

        with pytest.raises(asyncio.CancelledError):
            await sweeper.run_forever()

        assert clock.sleeps == [
            (datetime(2025, 1, 31, tzinfo=timezone.utc)
             - datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)).total_seconds(),
            28 * 86400,
            31 * 86400,
        ]
        assert node.methods().count("getaddressesbylabel") == 3

    @pytest.mark.asyncio
    async def test_failed_cycles_rearm(self, node, adapter):
        node.overrides["getaddressesbylabel"] = lambda params: rpc_error(-18, "No wallet is loaded")
        clock = FakeClock(datetime(2025, 3, 1, tzinfo=timezone.utc), max_sleeps=2)
        sweeper = SettlementSweeper(adapter, DEST, FEE, clock=clock, sleep=clock.sleep)

        with pytest.raises(asyncio.CancelledError):
            await sweeper.run_forever()

        assert node.methods() == ["getaddressesbylabel", "getaddressesbylabel"]
        assert sweeper.last_report.failed_phase is SweepPhase.COLLECT
        assert sweeper.next_run_at == datetime(2025, 5, 31, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_crashed_cycle_rearms(self, node, adapter):
        node.overrides["getaddressesbylabel"] = RuntimeError("boom")
        clock = FakeClock(datetime(2025, 3, 1, tzinfo=timezone.utc), max_sleeps=2)
        sweeper = SettlementSweeper(adapter, DEST, FEE, clock=clock, sleep=clock.sleep)

        with pytest.raises(asyncio.CancelledError):
            await sweeper.run_forever()

        assert node.methods().count("getaddressesbylabel") == 2

    @pytest.mark.asyncio
    async def test_start_and_stop(self, node, adapter):
        sweeper = SettlementSweeper(adapter, DEST, FEE)

        sweeper.start()
        await asyncio.sleep(0)
        assert sweeper.running
        assert sweeper.next_run_at is not None

        await sweeper.stop()
        assert not sweeper.running
        assert node.calls == []

        sweeper.start()
        await asyncio.sleep(0)
        assert sweeper.running
        await sweeper.stop()
