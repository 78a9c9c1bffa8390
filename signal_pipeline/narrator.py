# signal_pipeline/narrator.py
import logging

from .models import (
    ExecutionParams, MarketContext, MarketSnapshot, TechnicalSignals,
    TradeAction, TradingDecision, to_decimal,
)


class RuleBasedNarrator:
    """
    Deterministic decision source: picks an action from risk and trend strength,
    sizes the position and writes a short plain-text rationale.
    An LLM-backed narrator can replace it behind the same decide() call.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        self.cfg = config["strategy"]
        self.logger = logger

    async def decide(
        self,
        token: MarketSnapshot,
        technical: TechnicalSignals,
        market: MarketContext,
        risk_score: float,
    ) -> TradingDecision:
        action = self.choose_action(risk_score, technical.trend_strength)
        size = self.position_size(risk_score, technical.trend_strength)

        return TradingDecision(
            asset_address=token.asset_address,
            action=action,
            size=to_decimal(round(size, 8)),
            confidence=technical.trend_strength * (1.0 - risk_score),
            rationale=self.rationale(token, technical, market, risk_score, action),
            risk_score=risk_score,
            technical_signals=technical,
            market_context=market,
            execution_params=self.execution_params(technical, risk_score),
        )

    def choose_action(self, risk_score: float, trend_strength: float) -> TradeAction:
        if risk_score > self.cfg["buy_min_risk_score"] and trend_strength > self.cfg["buy_min_trend"]:
            return TradeAction.BUY
        if risk_score < self.cfg["sell_max_risk_score"] or trend_strength < self.cfg["sell_max_trend"]:
            return TradeAction.SELL
        return TradeAction.HOLD

    def position_size(self, risk_score: float, trend_strength: float) -> float:
        size = self.cfg["base_position_size"] * (1.0 - risk_score) * trend_strength
        return max(self.cfg["min_position_size"], min(size, self.cfg["max_position_size"]))

    def execution_params(self, technical: TechnicalSignals, risk_score: float) -> ExecutionParams:
        stop_loss = self.cfg["tight_stop_loss"] if risk_score > self.cfg["buy_min_risk_score"] else self.cfg["stop_loss"]
        return ExecutionParams(
            entry_type=self.cfg.get("entry_type", "Market"),
            time_horizon=technical.timeframe,
            stop_loss=stop_loss,
            take_profit=list(self.cfg["take_profits"]),
            max_slippage=self.cfg["max_slippage"],
        )

    @staticmethod
    def rationale(token, technical, market, risk_score, action) -> str:
        return (
            f"{action.value.upper()} {token.symbol}: {technical.signal_type.lower()} on {technical.timeframe} "
            f"(trend {technical.trend_strength:.2f}, momentum {technical.momentum_score:.2f}, "
            f"volatility {technical.volatility_score:.2f}); market {market.market_trend.lower()} "
            f"with {market.volume_profile.lower()} volume; risk score {risk_score:.2f}."
        )
