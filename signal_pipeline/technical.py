# signal_pipeline/technical.py
import logging
from typing import List

from .models import MarketSnapshot, TechnicalSignals


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _sign(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


class TechnicalAnalyzer:
    """
    Turns an enriched snapshot (see indicators.enrich_snapshot) into
    trend, momentum and volatility scores in [0, 1] plus a categorical label.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        self.cfg = config.get("indicators", {})
        self.timeframe = self.cfg.get("timeframe", "4h")
        self.logger = logger

    def analyze(self, token: MarketSnapshot) -> TechnicalSignals:
        trend = self.trend_strength(token)
        momentum = self.momentum_score(token)
        volatility = self.volatility_score(token)
        signals = TechnicalSignals(
            trend_strength=trend,
            momentum_score=momentum,
            volatility_score=volatility,
            support_resistance=self.support_resistance(token),
            signal_type=self.signal_type(trend, momentum, volatility, token),
            timeframe=self.timeframe,
        )
        self.logger.debug(
            f"{token.symbol} technicals | trend={trend:.2f} momentum={momentum:.2f} "
            f"volatility={volatility:.2f} type={signals.signal_type}"
        )
        return signals

    def trend_strength(self, token: MarketSnapshot) -> float:
        price_weight = 0.6 if token.price_change_24h > 0 else 0.4
        volume_weight = 0.7 if token.volume_change_24h > 0 else 0.3

        price_score = _clamp(token.price_change_24h / 100.0, -1.0, 1.0)
        volume_score = _clamp(token.volume_change_24h / 200.0, -1.0, 1.0)
        trend = abs(price_score * price_weight + volume_score * volume_weight)

        if token.rsi_14 is not None:
            rsi = float(token.rsi_14)
            if rsi > 70.0:
                rsi_score = (100.0 - rsi) / 30.0
            elif rsi < 30.0:
                rsi_score = rsi / 30.0
            else:
                rsi_score = 0.5 + (rsi - 50.0) / 40.0
            trend = (trend + rsi_score) / 2.0

        return _clamp(trend)

    def momentum_score(self, token: MarketSnapshot) -> float:
        """Average of directional votes, mapped from [-1, 1] onto [0, 1]."""
        votes: List[float] = []

        if token.rsi_14 is not None:
            rsi = float(token.rsi_14)
            votes.append(1.0 if rsi > 70.0 else -1.0 if rsi < 30.0 else 0.0)

        if token.macd is not None and token.macd_signal is not None:
            votes.append(1.0 if token.macd > token.macd_signal else -1.0)

        votes.append(_sign(token.price_change_24h))
        votes.append(_sign(token.volume_change_24h))

        return (sum(votes) / len(votes) + 1.0) / 2.0

    def volatility_score(self, token: MarketSnapshot) -> float:
        volatility = 0.0
        price = float(token.price)

        if token.bollinger_upper is not None and token.bollinger_lower is not None and price > 0:
            volatility += float(token.bollinger_upper - token.bollinger_lower) / price

        volatility += abs(token.price_change_24h) / 100.0
        volatility += abs(token.volume_change_24h) / 100.0
        return min(volatility / 3.0, 1.0)

    def support_resistance(self, token: MarketSnapshot) -> List[float]:
        # Fixed +/-10% bands around spot until historical pivots are tracked.
        price = float(token.price)
        return [price * 0.9, price * 1.1]

    def signal_type(self, trend: float, momentum: float, volatility: float, token: MarketSnapshot) -> str:
        if trend > 0.7 and momentum > 0.7:
            return "Strong Uptrend" if token.price_change_24h > 0 else "Strong Downtrend"
        if volatility > 0.8:
            return "High Volatility"
        if trend < 0.3:
            return "Ranging"
        return "Mixed Signals"
