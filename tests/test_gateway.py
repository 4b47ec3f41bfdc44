"""Tests for ledger gateways and the RPC rate limiter."""

import asyncio
import time

import pytest

from forwarder.errors import TransportError
from forwarder.gateway.base import MAX_COMPUTE_UNITS, SimulatedLedger, SimulationResult
from forwarder.gateway.factory import get_gateway
from forwarder.gateway.solana import SolanaGateway, parse_transaction
from forwarder.utils.ratelimit import AsyncRateLimiter

WATCHED = "Watched111111111111111111111111111111111111"
PAYER = "Payer11111111111111111111111111111111111111"


def transfer_ix(source, destination, lamports, kind="transfer"):
    return {
        "program": "system",
        "programId": "11111111111111111111111111111111",
        "parsed": {
            "type": kind,
            "info": {"source": source, "destination": destination, "lamports": lamports},
        },
    }


class TestParseTransaction:
    """Tests for reducing getTransaction results."""

    def test_outer_and_inner_transfers(self):
        result = {
            "meta": {
                "err": None,
                "fee": 5000,
                "innerInstructions": [
                    {"index": 0, "instructions": [transfer_ix(PAYER, WATCHED, 300)]}
                ],
            },
            "transaction": {
                "message": {
                    "instructions": [
                        transfer_ix(PAYER, WATCHED, 700),
                        transfer_ix(PAYER, "Other", 50),
                        {"programId": "Memo", "parsed": "hello"},
                    ]
                }
            },
        }

        tx = parse_transaction("sig", result)

        assert tx.fee == 5000
        assert tx.error is None
        assert tx.amount_to(WATCHED) == 1000
        assert tx.sender_to(WATCHED) == PAYER
        assert tx.amount_to("Nobody") == 0
        assert tx.sender_to("Nobody") is None

    def test_failed_transaction(self):
        result = {
            "meta": {"err": {"InstructionError": [0, "Custom"]}, "fee": 5000},
            "transaction": {"message": {"instructions": []}},
        }
        assert parse_transaction("sig", result).error is not None

    def test_not_found(self):
        assert parse_transaction("sig", None) is None

    def test_malformed_transfer_is_skipped(self):
        bad = transfer_ix(PAYER, WATCHED, "lots")
        result = {"meta": {}, "transaction": {"message": {"instructions": [bad]}}}
        assert parse_transaction("sig", result).transfers == []


class TestSimulatedLedger:
    """Tests for the in-process ledger."""

    @pytest.mark.asyncio
    async def test_subscription_receives_transfers(self):
        ledger = SimulatedLedger()

        async with ledger.subscribe_logs(WATCHED) as events:
            assert ledger.open_subscriptions == 1
            signature = ledger.add_transfer(WATCHED, 42)
            event = await asyncio.wait_for(events.__anext__(), timeout=1)

        assert event.signature == signature
        assert ledger.open_subscriptions == 0
        assert not ledger.watching(WATCHED)
        assert ledger.balances[WATCHED] == 42

    @pytest.mark.asyncio
    async def test_subscription_failure(self):
        ledger = SimulatedLedger()

        with pytest.raises(TransportError):
            async with ledger.subscribe_logs(WATCHED) as events:
                ledger.fail_subscription(WATCHED)
                await events.__anext__()

        assert ledger.open_subscriptions == 0

    @pytest.mark.asyncio
    async def test_failed_transfer_not_credited(self):
        ledger = SimulatedLedger()
        signature = ledger.add_transfer(WATCHED, 42, error="boom")

        assert await ledger.balance_of(WATCHED) == 0
        assert (await ledger.fetch_transaction(signature)).error == "boom"

    @pytest.mark.asyncio
    async def test_confirm_unknown(self):
        with pytest.raises(TransportError):
            await SimulatedLedger().confirm_transaction("missing")

    def test_simulation_overboard(self):
        assert SimulationResult(failed=True).overboard
        assert SimulationResult(failed=False, units_consumed=MAX_COMPUTE_UNITS + 1).overboard
        assert not SimulationResult(failed=False, units_consumed=MAX_COMPUTE_UNITS).overboard


class TestGatewayFactory:
    """Tests for gateway selection."""

    def test_dry_run_uses_simulated_ledger(self, settings):
        assert isinstance(get_gateway(settings), SimulatedLedger)

    @pytest.mark.asyncio
    async def test_live_uses_solana(self, settings):
        gateway = get_gateway(settings.model_copy(update={"dry_run": False}))
        assert isinstance(gateway, SolanaGateway)
        assert gateway.limiter.every == settings.rpc_rate_limit_every
        await gateway.close()


class TestRateLimiter:
    """Tests for the RPC token bucket."""

    @pytest.mark.asyncio
    async def test_disabled(self):
        limiter = AsyncRateLimiter(every=0)
        for _ in range(100):
            await limiter.acquire()

    @pytest.mark.asyncio
    async def test_burst_then_wait(self):
        limiter = AsyncRateLimiter(every=0.05, burst=2)

        start = time.monotonic()
        async with limiter:
            pass
        async with limiter:
            pass
        assert time.monotonic() - start < 0.04

        await limiter.acquire()
        assert time.monotonic() - start >= 0.04
