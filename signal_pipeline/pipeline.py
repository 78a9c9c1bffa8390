# signal_pipeline/pipeline.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from .errors import (
    ConflictingOrder, CooldownActive, PersistenceFailure,
    TransientUpstreamError, ValidationFailure,
)
from .execution import ExecutionEngine
from .indicators import enrich_snapshot
from .interfaces import DecisionNarrator, MarketDataSource, Notifier, SnapshotStore
from .models import ExecutionRecord, MarketContext, MarketSnapshot, TradeAction
from .notifier import fire_and_forget
from .risk_engine import RiskEngine
from .signal_engine import SignalGenerator
from .technical import TechnicalAnalyzer


class SignalPipeline:
    """
    Polling cycle over a set of assets.
    For each asset: snapshot -> indicators -> signal vs. previous snapshot ->
    risk -> decision -> execution. Assets run as independent tasks and one
    asset's failure never stops the others.
    """
    def __init__(
        self,
        config: dict,
        source: MarketDataSource,
        store: SnapshotStore,
        narrator: DecisionNarrator,
        execution: ExecutionEngine,
        logger: logging.Logger,
        audit_logger=None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self.source = source
        self.store = store
        self.narrator = narrator
        self.execution = execution
        self.logger = logger
        self.audit_logger = audit_logger
        self.notifier = notifier

        self.analyzer = TechnicalAnalyzer(config, logger)
        self.generator = SignalGenerator(config, logger)
        self.risk = RiskEngine(config, logger)

        self.lookback = config["indicators"]["lookback"]
        self.portfolio_value = float(config["risk"]["portfolio_value"])
        self.market_cfg = config["market"]
        self.active_assets: Set[str] = set()
        self.latest: Dict[str, Dict[str, Any]] = {}
        self._pending_notifications: Set[asyncio.Task] = set()

    async def startup(self) -> int:
        """Restores open orders from persistence into the execution engine."""
        orders = await self._persist("load_open_orders", self.store.load_open_orders)
        restored = await self.execution.restore_orders(orders)
        if restored:
            self.logger.info(f"Restored {restored} open order(s)")
        return restored

    def market_context(self, token: MarketSnapshot) -> MarketContext:
        liquidity_score = 0.0
        if token.liquidity is not None and token.market_cap:
            liquidity_score = float(token.liquidity / token.market_cap)
        high_volume = token.volume_change_24h > self.market_cfg["high_volume_change_pct"]
        return MarketContext(
            market_trend=self.market_cfg["market_trend"],
            sector_performance=0.0,
            liquidity_score=liquidity_score,
            volume_profile="High" if high_volume else "Normal",
            sentiment_score=token.social_sentiment if token.social_sentiment is not None else 0.5,
        )

    async def _persist(self, label: str, fn: Callable[..., Awaitable], *args):
        """Calls the store, retrying once before surfacing a PersistenceFailure."""
        try:
            return await fn(*args)
        except Exception as first:
            self.logger.warning(f"Persistence {label} failed ({first}), retrying once")
            try:
                return await fn(*args)
            except Exception as e:
                raise PersistenceFailure(f"{label} failed twice: {e}") from e

    async def process_asset(self, asset: str) -> Optional[ExecutionRecord]:
        if asset in self.active_assets:
            return None
        self.active_assets.add(asset)
        try:
            return await self._process(asset)
        finally:
            self.active_assets.discard(asset)

    async def _process(self, asset: str) -> Optional[ExecutionRecord]:
        snapshot = await self.source.fetch_snapshot(asset)
        prices = await self.source.fetch_price_series(asset, self.lookback)
        snapshot = enrich_snapshot(snapshot, prices, self.config["indicators"])

        previous = await self._persist("load_previous_snapshot", self.store.load_previous_snapshot, asset)
        await self._persist("store_snapshot", self.store.store_snapshot, snapshot)

        technical = self.analyzer.analyze(snapshot)
        market = self.market_context(snapshot)
        risk_score = self.risk.assess(snapshot, technical, market)
        signal = self.generator.generate_validated(snapshot, previous, risk_score)

        self.latest[asset] = {"snapshot": snapshot, "technical": technical, "risk": risk_score, "signal": signal}
        if signal is None:
            return None

        await self._persist("store_signal", self.store.store_signal, signal)
        if self.audit_logger is not None:
            await self.audit_logger.log_signal(signal)

        decision = await self.narrator.decide(snapshot, technical, market, risk_score)
        if decision.action == TradeAction.HOLD:
            self.logger.info(f"{snapshot.symbol}: HOLD ({decision.rationale})")
            return None
        if not self.risk.validate_position_size(float(decision.size), self.portfolio_value):
            raise ValidationFailure(
                f"Position size {decision.size} rejected for portfolio value {self.portfolio_value}"
            )

        # Let an in-flight execution finish even if the cycle gets cancelled.
        record = await asyncio.shield(self.execution.execute_trade(decision, snapshot))

        await self._persist("store_execution", self.store.store_execution, record)
        if self.audit_logger is not None:
            await self.audit_logger.log_execution(record)
        if self.notifier is not None:
            task = fire_and_forget(
                self.notifier,
                f"{decision.action.value.upper()} {record.size} {snapshot.symbol} @ {record.execution_price} | {decision.rationale}",
                self.logger,
            )
            self._pending_notifications.add(task)
            task.add_done_callback(self._pending_notifications.discard)
        return record

    async def run_cycle(self, assets: Iterable[str]) -> Dict[str, Any]:
        """Processes all assets concurrently. Returns each asset's record, None, or exception."""
        assets = list(assets)
        results = await asyncio.gather(*(self.process_asset(a) for a in assets), return_exceptions=True)
        outcome = dict(zip(assets, results))
        for asset, result in outcome.items():
            if isinstance(result, BaseException):
                self._report(asset, result)
        return outcome

    def _report(self, asset: str, error: BaseException):
        if isinstance(error, (CooldownActive, ConflictingOrder)):
            self.logger.info(f"{asset}: {error}")
        elif isinstance(error, ValidationFailure):
            self.logger.warning(f"⛔ {asset}: validation failed: {error}")
        elif isinstance(error, (TransientUpstreamError, PersistenceFailure)):
            self.logger.error(f"❌ {asset}: {type(error).__name__}: {error}")
        else:
            self.logger.error(f"❌ {asset}: unexpected error", exc_info=error)

    async def run_forever(self, assets: Iterable[str], stop: Optional[asyncio.Event] = None):
        interval = self.config["system"]["poll_interval_seconds"]
        assets = list(assets)
        loop = asyncio.get_running_loop()
        while stop is None or not stop.is_set():
            start = loop.time()
            await self.run_cycle(assets)
            elapsed = loop.time() - start
            await asyncio.sleep(max(0.0, interval - elapsed))
