import copy
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from signal_pipeline.config import DEFAULT_CONFIG
from signal_pipeline.models import (
    ExecutionParams, MarketContext, MarketSnapshot, TechnicalSignals,
    TradeAction, TradingDecision,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def config():
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def logger():
    return logging.getLogger("signal_pipeline.tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_snapshot():
    base_time = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _make(asset="SOL/USDT", price="100", minutes=0, **overrides):
        values = dict(
            asset_address=asset,
            symbol=asset.split("/")[0],
            price=Decimal(str(price)),
            timestamp=base_time + timedelta(minutes=minutes),
        )
        for key in ("volume_24h", "market_cap", "liquidity"):
            if key in overrides and overrides[key] is not None:
                overrides[key] = Decimal(str(overrides[key]))
        values.update(overrides)
        return MarketSnapshot(**values)

    return _make


@pytest.fixture
def make_decision():
    def _make(asset="SOL/USDT", action=TradeAction.BUY, size="0.5", stop_loss=0.1,
              take_profit=(0.2, 0.3), max_slippage=0.01, entry_type="Market"):
        technical = TechnicalSignals(0.8, 0.7, 0.2, [90.0, 110.0], "Mixed Signals", "4h")
        return TradingDecision(
            asset_address=asset,
            action=action,
            size=Decimal(size),
            confidence=0.4,
            rationale="test decision",
            risk_score=0.75,
            technical_signals=technical,
            market_context=MarketContext(),
            execution_params=ExecutionParams(
                entry_type=entry_type,
                stop_loss=stop_loss,
                take_profit=list(take_profit),
                max_slippage=max_slippage,
            ),
        )

    return _make
