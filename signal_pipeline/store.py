# signal_pipeline/store.py
import asyncio
from collections import defaultdict
from typing import Dict, List, Optional

from .models import ActiveOrder, ExecutionRecord, MarketSignal, MarketSnapshot


class MemoryStore:
    """
    In-process persistence for snapshots, signals and execution records.
    Snapshots are append-only per asset; `retention` caps how many are kept.
    """
    def __init__(self, retention: int = 500):
        self.retention = retention
        self.snapshots: Dict[str, List[MarketSnapshot]] = defaultdict(list)
        self.signals: List[MarketSignal] = []
        self.executions: List[ExecutionRecord] = []
        self.open_orders: List[ActiveOrder] = []
        self._lock = asyncio.Lock()

    async def store_snapshot(self, snapshot: MarketSnapshot):
        async with self._lock:
            history = self.snapshots[snapshot.asset_address]
            history.append(snapshot)
            if len(history) > self.retention:
                del history[: len(history) - self.retention]

    async def store_signal(self, signal: MarketSignal):
        async with self._lock:
            self.signals.append(signal)

    async def store_execution(self, record: ExecutionRecord):
        async with self._lock:
            self.executions.append(record)

    async def load_previous_snapshot(self, asset: str) -> Optional[MarketSnapshot]:
        """Most recently stored snapshot for the asset, or None on cold start."""
        async with self._lock:
            history = self.snapshots.get(asset)
            return history[-1] if history else None

    async def load_open_orders(self) -> List[ActiveOrder]:
        async with self._lock:
            return [o for o in self.open_orders if o.status.is_open]
