import asyncio
import logging
from decimal import Decimal

import pytest

from signal_pipeline.errors import (
    ConflictingOrder, CooldownActive, InvalidExecutionParams,
    InvalidOrderTransition, OrderSubmissionFailed,
)
from signal_pipeline.execution import DryRunBackend, ExecutionEngine
from signal_pipeline.models import ActiveOrder, OrderFill, OrderStatus, OrderType, TradeAction


class FailingBackend:
    def __init__(self):
        self.calls = 0

    async def submit(self, order):
        self.calls += 1
        raise RuntimeError("exchange rejected order")


def build_engine(config, logger, clock, backend=None, interval=None):
    if interval is not None:
        config["execution"]["min_execution_interval_seconds"] = interval
    backend = backend or DryRunBackend(logger)
    return ExecutionEngine(config, logger, backend, clock=clock), backend


def open_order(asset="SOL/USDT", size="2", status=OrderStatus.PENDING):
    return ActiveOrder(
        asset_address=asset,
        order_type=OrderType.LIMIT,
        size=Decimal(size),
        entry_price=Decimal("100"),
        stop_loss=Decimal("90"),
        take_profits=[Decimal("120")],
        status=status,
    )


def test_successful_trade_produces_single_record(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, backend = build_engine(config, logger, clock)
        record = await engine.execute_trade(make_decision(), make_snapshot(price="100"))

        assert record.status == OrderStatus.FILLED
        assert record.execution_price == Decimal("100")
        assert record.slippage == Decimal("0.001")
        assert record.tx_reference == "simulated_tx_signature"
        assert record.order_type == OrderType.MARKET
        assert engine.get_execution_history() == [record]
        assert engine.get_active_orders() == {}

        submitted = backend.submitted[0]
        assert submitted.stop_loss == Decimal("90")
        assert submitted.take_profits == [Decimal("120"), Decimal("130")]
        assert submitted.side == "buy"

    asyncio.run(scenario())


def test_limit_entry_type(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        record = await engine.execute_trade(make_decision(entry_type="Limit"), make_snapshot())
        assert record.order_type == OrderType.LIMIT

    asyncio.run(scenario())


def test_cooldown_blocks_every_asset(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, backend = build_engine(config, logger, clock)
        await engine.execute_trade(make_decision("SOL/USDT"), make_snapshot("SOL/USDT"))

        clock.advance(10)
        with pytest.raises(CooldownActive) as exc:
            await engine.execute_trade(make_decision("ETH/USDT"), make_snapshot("ETH/USDT"))
        assert exc.value.remaining_seconds == pytest.approx(290.0)
        assert len(backend.submitted) == 1

        clock.advance(291)
        record = await engine.execute_trade(make_decision("ETH/USDT"), make_snapshot("ETH/USDT"))
        assert record.asset_address == "ETH/USDT"
        assert len(engine.get_execution_history()) == 2

    asyncio.run(scenario())


def test_without_cooldown_different_assets_both_execute(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, _ = build_engine(config, logger, clock, interval=0)
        await engine.execute_trade(make_decision("SOL/USDT"), make_snapshot("SOL/USDT"))
        await engine.execute_trade(make_decision("ETH/USDT"), make_snapshot("ETH/USDT"))
        assert [r.asset_address for r in engine.get_execution_history()] == ["SOL/USDT", "ETH/USDT"]

    asyncio.run(scenario())


@pytest.mark.parametrize("overrides, message", [
    ({"max_slippage": 0.05}, "Slippage"),
    ({"stop_loss": 0.0}, "stop loss"),
    ({"stop_loss": 0.6}, "stop loss"),
    ({"take_profit": ()}, "No take profit"),
    ({"stop_loss": 0.2, "take_profit": (0.3, 0.15)}, "Take profit level 1"),
])
def test_invalid_params_leave_no_state(config, logger, clock, make_decision, make_snapshot, overrides, message):
    async def scenario():
        engine, backend = build_engine(config, logger, clock)
        with pytest.raises(InvalidExecutionParams, match=message):
            await engine.execute_trade(make_decision(**overrides), make_snapshot())

        assert engine.get_active_orders() == {}
        assert engine.get_execution_history() == []
        assert backend.submitted == []
        assert engine.cooldown_remaining() == 0.0

    asyncio.run(scenario())


def test_hold_is_rejected(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, backend = build_engine(config, logger, clock)
        with pytest.raises(InvalidExecutionParams):
            await engine.execute_trade(make_decision(action=TradeAction.HOLD), make_snapshot())
        assert backend.submitted == []

    asyncio.run(scenario())


def test_open_order_conflicts(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, backend = build_engine(config, logger, clock)
        assert await engine.restore_orders([open_order()]) == 1

        with pytest.raises(ConflictingOrder) as exc:
            await engine.execute_trade(make_decision(), make_snapshot())
        assert exc.value.status == OrderStatus.PENDING
        assert backend.submitted == []

        # A different asset is unaffected.
        await engine.execute_trade(make_decision("ETH/USDT"), make_snapshot("ETH/USDT"))

    asyncio.run(scenario())


def test_terminal_order_does_not_block(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        await engine.restore_orders([open_order()])
        failed = await engine.mark_failed("SOL/USDT", "expired")
        assert failed.status == OrderStatus.FAILED
        assert failed.failure_reason == "expired"

        record = await engine.execute_trade(make_decision(), make_snapshot())
        assert record.status == OrderStatus.FILLED
        assert len(engine.get_execution_history()) == 2

    asyncio.run(scenario())


def test_restore_skips_terminal_orders(config, logger, clock):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        restored = await engine.restore_orders([
            open_order("SOL/USDT", status=OrderStatus.FILLED),
            open_order("ETH/USDT", status=OrderStatus.PARTIALLY_FILLED),
            open_order("ETH/USDT"),
        ])
        assert restored == 1
        assert list(engine.get_active_orders()) == ["ETH/USDT"]

    asyncio.run(scenario())


def test_backend_failure_records_failed_execution(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, backend = build_engine(config, logger, clock, backend=FailingBackend())
        with pytest.raises(OrderSubmissionFailed, match="exchange rejected order"):
            await engine.execute_trade(make_decision(), make_snapshot())

        history = engine.get_execution_history()
        assert len(history) == 1
        assert history[0].status == OrderStatus.FAILED
        assert history[0].failure_reason == "exchange rejected order"
        assert engine.get_active_orders() == {}
        assert engine.cooldown_remaining() == 0.0
        assert backend.calls == 1

    asyncio.run(scenario())


def test_partial_fills_complete_order(config, logger, clock):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        await engine.restore_orders([open_order(size="2")])

        assert await engine.record_partial_fill("SOL/USDT", "0.5") is None
        order = engine.get_active_orders()["SOL/USDT"]
        assert order.status == OrderStatus.PARTIALLY_FILLED
        assert order.filled_amount == Decimal("0.5")

        record = await engine.record_partial_fill("SOL/USDT", "1.5")
        assert record.status == OrderStatus.FILLED
        assert record.size == Decimal("2")
        assert engine.get_active_orders() == {}
        assert len(engine.get_execution_history()) == 1

        with pytest.raises(InvalidOrderTransition):
            await engine.mark_filled("SOL/USDT")

    asyncio.run(scenario())


def test_partially_filled_order_still_conflicts(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        await engine.restore_orders([open_order()])
        await engine.record_partial_fill("SOL/USDT", 1)
        with pytest.raises(ConflictingOrder):
            await engine.execute_trade(make_decision(), make_snapshot())

    asyncio.run(scenario())


def test_cancel_and_mark_filled(config, logger, clock):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        await engine.restore_orders([open_order("SOL/USDT"), open_order("ETH/USDT")])

        cancelled = await engine.cancel_order("SOL/USDT")
        filled = await engine.mark_filled("ETH/USDT", execution_price="101", slippage="0.01", tx_reference="abc")

        assert cancelled.status == OrderStatus.CANCELLED
        assert filled.execution_price == Decimal("101")
        assert filled.tx_reference == "abc"
        assert engine.get_active_orders() == {}
        with pytest.raises(InvalidOrderTransition):
            await engine.cancel_order("SOL/USDT")

    asyncio.run(scenario())


def test_non_positive_fill_is_rejected(config, logger, clock):
    async def scenario():
        engine, _ = build_engine(config, logger, clock)
        await engine.restore_orders([open_order()])
        with pytest.raises(InvalidOrderTransition):
            await engine.record_partial_fill("SOL/USDT", 0)

    asyncio.run(scenario())


def test_history_is_a_copy(config, clock, make_decision, make_snapshot):
    async def scenario():
        engine, _ = build_engine(config, logging.getLogger("copy"), clock)
        await engine.execute_trade(make_decision(), make_snapshot())
        engine.get_execution_history().clear()
        engine.get_active_orders()["X"] = None
        assert len(engine.get_execution_history()) == 1
        assert engine.get_active_orders() == {}

    asyncio.run(scenario())


class HangingBackend:
    """Blocks on the first submission until released. Later submissions fill at once."""
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def submit(self, order):
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            await self.release.wait()
        return OrderFill("tx-1", order.entry_price, Decimal("0"), order.size)


def test_cancelled_submission_releases_the_asset(config, logger, clock, make_decision, make_snapshot):
    async def scenario():
        backend = HangingBackend()
        engine, _ = build_engine(config, logger, clock, backend=backend)

        task = asyncio.create_task(engine.execute_trade(make_decision(), make_snapshot()))
        await backend.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.get_active_orders() == {}
        history = engine.get_execution_history()
        assert len(history) == 1
        assert history[0].status == OrderStatus.FAILED
        assert history[0].failure_reason == "cancelled during submission"
        assert engine.cooldown_remaining() == 0.0

        record = await engine.execute_trade(make_decision(), make_snapshot())
        assert record.status == OrderStatus.FILLED
        assert backend.calls == 2

    asyncio.run(scenario())
