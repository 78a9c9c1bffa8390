# signal_pipeline/interfaces.py
"""Capability interfaces for the collaborators the pipeline depends on."""
from typing import List, Optional, Protocol

from .models import (
    ActiveOrder, ExecutionRecord, MarketContext, MarketSignal, MarketSnapshot,
    OrderFill, TechnicalSignals, TradingDecision,
)


class MarketDataSource(Protocol):
    async def fetch_snapshot(self, asset: str) -> MarketSnapshot: ...

    async def fetch_price_series(self, asset: str, lookback: int) -> List[float]: ...


class SnapshotStore(Protocol):
    async def store_snapshot(self, snapshot: MarketSnapshot) -> None: ...

    async def store_signal(self, signal: MarketSignal) -> None: ...

    async def store_execution(self, record: ExecutionRecord) -> None: ...

    async def load_previous_snapshot(self, asset: str) -> Optional[MarketSnapshot]: ...

    async def load_open_orders(self) -> List[ActiveOrder]: ...


class DecisionNarrator(Protocol):
    async def decide(
        self,
        token: MarketSnapshot,
        technical: TechnicalSignals,
        market: MarketContext,
        risk_score: float,
    ) -> TradingDecision: ...


class OrderBackend(Protocol):
    async def submit(self, order: ActiveOrder) -> OrderFill: ...


class Notifier(Protocol):
    async def notify(self, message: str) -> None: ...
