import asyncio
from decimal import Decimal

import pytest

from signal_pipeline.models import MarketContext, TechnicalSignals, TradeAction
from signal_pipeline.narrator import RuleBasedNarrator


@pytest.fixture
def narrator(config, logger):
    return RuleBasedNarrator(config, logger)


def technicals(trend):
    return TechnicalSignals(trend, 0.6, 0.3, [90.0, 110.0], "Mixed Signals", "4h")


@pytest.mark.parametrize("risk, trend, action", [
    (0.8, 0.7, TradeAction.BUY),
    (0.2, 0.7, TradeAction.SELL),
    (0.5, 0.1, TradeAction.SELL),
    (0.5, 0.5, TradeAction.HOLD),
    (0.7, 0.9, TradeAction.HOLD),
])
def test_choose_action(narrator, risk, trend, action):
    assert narrator.choose_action(risk, trend) == action


def test_position_size_is_clamped(narrator):
    assert narrator.position_size(0.5, 0.8) == pytest.approx(0.4)
    assert narrator.position_size(0.99, 0.1) == pytest.approx(0.1)


def test_execution_params_tighten_stop_for_high_scores(narrator):
    assert narrator.execution_params(technicals(0.7), 0.8).stop_loss == 0.05
    params = narrator.execution_params(technicals(0.7), 0.5)
    assert params.stop_loss == 0.1
    assert params.take_profit == [0.15, 0.25, 0.4]
    assert params.time_horizon == "4h"


def test_decide_builds_full_decision(narrator, make_snapshot):
    decision = asyncio.run(narrator.decide(make_snapshot(), technicals(0.8), MarketContext(), 0.75))

    assert decision.action == TradeAction.BUY
    assert decision.size == Decimal("0.2")
    assert decision.confidence == pytest.approx(0.2)
    assert decision.rationale.startswith("BUY SOL: mixed signals on 4h")
    assert decision.execution_params.stop_loss == 0.05
