# signal_pipeline/execution.py
import asyncio
import logging
import time
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

import ccxt.async_support as ccxt

from .errors import (
    ConflictingOrder, CooldownActive, InvalidExecutionParams,
    InvalidOrderTransition, OrderSubmissionFailed,
)
from .interfaces import OrderBackend
from .models import (
    ActiveOrder, ExecutionParams, ExecutionRecord, MarketSnapshot, OrderFill,
    OrderStatus, OrderType, TradeAction, TradingDecision, ZERO, to_decimal,
)

MAX_STOP_LOSS = 0.5
SIMULATED_SLIPPAGE = Decimal("0.001")


class DryRunBackend:
    """Simulates an instant market fill at the entry price with 0.1% slippage."""
    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.submitted: List[ActiveOrder] = []

    async def submit(self, order: ActiveOrder) -> OrderFill:
        self.submitted.append(order)
        self.logger.info(f"🔵 DRY RUN: Order simulated | {order.asset_address} {order.side} {order.size} @ {order.entry_price}")
        return OrderFill(
            tx_reference="simulated_tx_signature",
            execution_price=order.entry_price,
            slippage=SIMULATED_SLIPPAGE,
            filled_amount=order.size,
        )


class CcxtOrderBackend:
    """Places orders on a ccxt exchange client."""
    def __init__(self, exchange, logger: logging.Logger):
        self.exchange = exchange
        self.logger = logger

    async def submit(self, order: ActiveOrder) -> OrderFill:
        order_type = "limit" if order.order_type == OrderType.LIMIT else "market"
        price = float(order.entry_price) if order_type == "limit" else None
        self.logger.info(f"⚡ EXECUTION TRIGGERED: {order.asset_address} | {order.side} {order.size} ({order_type})")

        try:
            res = await self.exchange.create_order(order.asset_address, order_type, order.side, float(order.size), price)
        except ccxt.BaseError as e:
            raise OrderSubmissionFailed(f"{type(e).__name__}: {e}") from e

        avg = res.get("average") or res.get("price")
        execution_price = to_decimal(avg) if avg else order.entry_price
        slippage = abs(execution_price - order.entry_price) / order.entry_price if order.entry_price else ZERO
        filled = res.get("filled")
        return OrderFill(
            tx_reference=res.get("id"),
            execution_price=execution_price,
            slippage=slippage,
            filled_amount=to_decimal(filled) if filled is not None else order.size,
        )


class ExecutionEngine:
    """
    Turns trading decisions into orders and owns the order state:
    the active-order map (one open order per asset), the append-only
    execution history and the engine-wide cooldown timestamp.

    All state changes happen under one asyncio.Lock. Network I/O is delegated
    to the order backend, which is called exactly once per successful trade.
    Cooldown and dedup only hold within this process.
    """
    def __init__(self, config: dict, logger: logging.Logger, backend: OrderBackend, clock: Callable[[], float] = time.monotonic):
        cfg = config["execution"]
        self.max_slippage = float(cfg["max_slippage"])
        self.min_execution_interval = float(cfg["min_execution_interval_seconds"])
        self.logger = logger
        self.backend = backend
        self._clock = clock
        self._active_orders: Dict[str, ActiveOrder] = {}
        self._history: List[ExecutionRecord] = []
        self._last_execution: Optional[float] = None
        self._lock = asyncio.Lock()
        self.logger.info(f"Initializing ExecutionEngine with max_slippage: {self.max_slippage}")

    # --- TRADE EXECUTION ---

    async def execute_trade(self, decision: TradingDecision, token: MarketSnapshot) -> ExecutionRecord:
        async with self._lock:
            self._check_cooldown()

            self.logger.info(f"Executing trade for {token.symbol} ({decision.action.value})")
            if decision.action == TradeAction.HOLD:
                raise InvalidExecutionParams("Hold decision has nothing to execute")
            self.validate_execution_params(decision.execution_params)

            existing = self._active_orders.get(decision.asset_address)
            if existing is not None:
                self._handle_existing_order(existing)

            order = self.prepare_order(decision, token)
            self._active_orders[order.asset_address] = order

            try:
                fill = await self.backend.submit(order)
            except asyncio.CancelledError:
                # Never leave a PENDING order behind, it would block the asset for good.
                self.logger.warning(f"Order submission cancelled for {order.asset_address}")
                order.status = OrderStatus.FAILED
                order.failure_reason = "cancelled during submission"
                self._finalize(order, order.entry_price, ZERO, None)
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
                self.logger.error(f"❌ Order submission failed for {order.asset_address}: {reason}")
                order.status = OrderStatus.FAILED
                order.failure_reason = reason
                self._finalize(order, order.entry_price, ZERO, None)
                if isinstance(e, OrderSubmissionFailed):
                    raise
                raise OrderSubmissionFailed(reason) from e

            if fill.slippage > to_decimal(decision.execution_params.max_slippage):
                self.logger.warning(
                    f"⚠️ Realized slippage {fill.slippage} above requested {decision.execution_params.max_slippage}"
                )
            if fill.filled_amount < order.size:
                self.logger.warning(f"Partial market fill {fill.filled_amount}/{order.size} for {order.asset_address}")
                order.size = fill.filled_amount

            order.filled_amount = fill.filled_amount
            order.status = OrderStatus.FILLED
            record = self._finalize(order, fill.execution_price, fill.slippage, fill.tx_reference)
            self._last_execution = self._clock()
            self.logger.info(f"✅ Trade executed: {record.asset_address} {record.size} @ {record.execution_price}")
            return record

    def _check_cooldown(self):
        remaining = self.cooldown_remaining()
        if remaining > 0:
            self.logger.info(f"⏳ Trade execution cooldown in effect. Must wait {remaining:.1f}s before next trade")
            raise CooldownActive(remaining)

    def cooldown_remaining(self) -> float:
        if self._last_execution is None:
            return 0.0
        elapsed = self._clock() - self._last_execution
        return max(0.0, self.min_execution_interval - elapsed)

    def validate_execution_params(self, params: ExecutionParams):
        if params.max_slippage > self.max_slippage:
            raise InvalidExecutionParams(
                f"Slippage {params.max_slippage} exceeds maximum allowed {self.max_slippage}"
            )
        if params.stop_loss <= 0.0 or params.stop_loss > MAX_STOP_LOSS:
            raise InvalidExecutionParams(f"Invalid stop loss percentage: {params.stop_loss}")
        if not params.take_profit:
            raise InvalidExecutionParams("No take profit levels specified")
        for i, tp in enumerate(params.take_profit):
            if tp <= params.stop_loss:
                raise InvalidExecutionParams(
                    f"Take profit level {i} ({tp}) must be greater than stop loss ({params.stop_loss})"
                )

    def _handle_existing_order(self, order: ActiveOrder):
        if order.status.is_open:
            raise ConflictingOrder(order.asset_address, order.status)
        # A terminal order should already be gone, drop the stale entry.
        self._active_orders.pop(order.asset_address, None)

    def prepare_order(self, decision: TradingDecision, token: MarketSnapshot) -> ActiveOrder:
        params = decision.execution_params
        entry = token.price
        return ActiveOrder(
            asset_address=decision.asset_address,
            order_type=OrderType.from_entry_type(params.entry_type),
            size=to_decimal(decision.size),
            entry_price=entry,
            stop_loss=entry * (1 - to_decimal(params.stop_loss)),
            take_profits=[entry * (1 + to_decimal(tp)) for tp in params.take_profit],
            side=decision.action.value,
        )

    def _finalize(self, order: ActiveOrder, price: Decimal, slippage: Decimal, tx_reference: Optional[str]) -> ExecutionRecord:
        """Writes the single terminal record for an order and drops it from the active map."""
        record = ExecutionRecord(
            asset_address=order.asset_address,
            order_type=order.order_type,
            size=order.size,
            execution_price=price,
            slippage=slippage,
            tx_reference=tx_reference,
            status=order.status,
            failure_reason=order.failure_reason,
        )
        self._history.append(record)
        self._active_orders.pop(order.asset_address, None)
        self.logger.debug(f"Order tracking updated. Active orders: {len(self._active_orders)}")
        return record

    # --- ORDER LIFECYCLE ---

    async def restore_orders(self, orders: Iterable[ActiveOrder]) -> int:
        """Loads open orders from persistence so they block conflicting trades."""
        restored = 0
        async with self._lock:
            for order in orders:
                if not order.status.is_open:
                    continue
                if order.asset_address in self._active_orders:
                    self.logger.warning(f"Duplicate open order for {order.asset_address} ignored on restore")
                    continue
                self._active_orders[order.asset_address] = order
                restored += 1
        return restored

    def _open_order(self, asset: str) -> ActiveOrder:
        order = self._active_orders.get(asset)
        if order is None or not order.status.is_open:
            raise InvalidOrderTransition(f"No open order for {asset}")
        return order

    async def record_partial_fill(self, asset: str, amount) -> Optional[ExecutionRecord]:
        """Adds to the filled amount. Completes the order once the full size is filled."""
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidOrderTransition(f"Fill amount must be positive, got {amount}")
        async with self._lock:
            order = self._open_order(asset)
            order.filled_amount += amount
            if order.filled_amount < order.size:
                order.status = OrderStatus.PARTIALLY_FILLED
                return None
            order.filled_amount = order.size
            order.status = OrderStatus.FILLED
            return self._finalize(order, order.entry_price, ZERO, None)

    async def mark_filled(self, asset: str, execution_price=None, slippage=ZERO, tx_reference: Optional[str] = None) -> ExecutionRecord:
        async with self._lock:
            order = self._open_order(asset)
            order.filled_amount = order.size
            order.status = OrderStatus.FILLED
            price = to_decimal(execution_price) if execution_price is not None else order.entry_price
            return self._finalize(order, price, to_decimal(slippage), tx_reference)

    async def cancel_order(self, asset: str) -> ExecutionRecord:
        async with self._lock:
            order = self._open_order(asset)
            order.status = OrderStatus.CANCELLED
            self.logger.info(f"Order cancelled for {asset} after {order.filled_amount}/{order.size} filled")
            return self._finalize(order, order.entry_price, ZERO, None)

    async def mark_failed(self, asset: str, reason: str) -> ExecutionRecord:
        async with self._lock:
            order = self._open_order(asset)
            order.status = OrderStatus.FAILED
            order.failure_reason = reason
            self.logger.warning(f"Order failed for {asset}: {reason}")
            return self._finalize(order, order.entry_price, ZERO, None)

    def get_active_orders(self) -> Dict[str, ActiveOrder]:
        return dict(self._active_orders)

    def get_execution_history(self) -> List[ExecutionRecord]:
        return list(self._history)
