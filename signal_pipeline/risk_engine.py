# signal_pipeline/risk_engine.py
import logging
from typing import Dict, Optional

from .errors import ConfigError
from .models import MarketContext, MarketSnapshot, TechnicalSignals

WEIGHT_NAMES = ("liquidity", "volatility", "market", "technical", "sentiment")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class RiskEngine:
    """
    Composite risk score in [0, 1] where 1.0 is the safest.

    Five sub-scores are clamped to [0, 1] and combined as a weighted average over
    the weights that actually applied, so a missing input narrows the score
    instead of dragging it to zero.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        self.cfg = config["risk"]
        self.logger = logger
        self.weights: Dict[str, float] = {name: float(self.cfg["weights"][name]) for name in WEIGHT_NAMES}
        self.min_liquidity_usd = float(self.cfg["min_liquidity_usd"])
        self.min_liquidity_ratio = float(self.cfg.get("min_liquidity_ratio", 0.1))
        self.trend_nudges: Dict[str, float] = self.cfg.get("trend_nudges", {})
        self.volume_profile_nudges: Dict[str, float] = self.cfg.get("volume_profile_nudges", {})
        self.signal_type_nudges: Dict[str, float] = self.cfg.get("signal_type_nudges", {})
        self.sector_nudge = float(self.cfg.get("sector_nudge", 0.1))
        self._validate_weights()

    def _validate_weights(self):
        if any(w < 0 for w in self.weights.values()):
            raise ConfigError(f"Risk weights must be non-negative: {self.weights}")
        total = sum(self.weights.values())
        if total > 1.0 + 1e-9:
            raise ConfigError(f"Risk weights sum to {total:.4f}, must not exceed 1.0")

    def assess(
        self,
        token: MarketSnapshot,
        technical: Optional[TechnicalSignals],
        market: Optional[MarketContext],
    ) -> float:
        sub_scores = {
            "liquidity": self.liquidity_risk(token),
            "volatility": None if technical is None else _clamp(1.0 - technical.volatility_score),
            "market": None if market is None else self.market_risk(market),
            "technical": None if technical is None else self.technical_risk(technical),
            "sentiment": self.sentiment_risk(token, market),
        }

        score = 0.0
        weight_sum = 0.0
        for name, value in sub_scores.items():
            if value is None or self.weights[name] == 0:
                continue
            score += value * self.weights[name]
            weight_sum += self.weights[name]

        if weight_sum == 0:
            self.logger.warning(f"⚠️ {token.symbol}: no risk inputs available, scoring as maximum risk")
            return 0.0

        result = _clamp(score / weight_sum)
        self.logger.debug(f"{token.symbol} risk={result:.3f} parts={sub_scores}")
        return result

    def liquidity_risk(self, token: MarketSnapshot) -> Optional[float]:
        if token.liquidity is None:
            return None

        liquidity = float(token.liquidity)
        # Hard floor: thin books invalidate every other liquidity signal.
        if liquidity < self.min_liquidity_usd:
            return 0.0

        score = 0.0
        market_cap = float(token.market_cap) if token.market_cap else 0.0
        if market_cap > 0:
            if liquidity / market_cap >= self.min_liquidity_ratio:
                score += 0.4
            if token.volume_24h is not None:
                score += min(float(token.volume_24h) / market_cap * 5.0, 0.3)

        if token.liquidity_change_24h is not None and token.liquidity_change_24h > 0:
            score += 0.2

        return _clamp(score)

    def market_risk(self, market: MarketContext) -> float:
        score = 0.5
        score += self.trend_nudges.get(market.market_trend, 0.0)
        score += self.sector_nudge if market.sector_performance > 0 else -self.sector_nudge
        score += self.volume_profile_nudges.get(market.volume_profile, 0.0)
        return _clamp(score)

    def technical_risk(self, technical: TechnicalSignals) -> float:
        """Neutral 0.5 nudged by the categorical signal label only."""
        score = 0.5 + self.signal_type_nudges.get(technical.signal_type, 0.0)
        return _clamp(score)

    def sentiment_risk(self, token: MarketSnapshot, market: Optional[MarketContext]) -> Optional[float]:
        has_social = any(v is not None for v in (token.social_sentiment, token.social_volume, token.dev_activity))
        if market is None and not has_social:
            return None

        score = 0.5
        if token.social_sentiment is not None:
            score += (token.social_sentiment - 0.5) * 0.3
        if token.social_volume is not None and token.social_volume > 1000:
            score += 0.1
        if token.dev_activity is not None and token.dev_activity > 0:
            score += 0.1
        if market is not None:
            score += (market.sentiment_score - 0.5) * 0.2
        return _clamp(score)

    def validate_position_size(self, size: float, portfolio_value: float) -> bool:
        """Position must sit within the configured size limits and per-asset portfolio share."""
        if size < self.cfg["min_position_size"] or size > self.cfg["max_position_size"]:
            return False
        if portfolio_value <= 0:
            return False
        if size / portfolio_value > self.cfg["max_position_per_token"]:
            self.logger.warning(
                f"⛔ REJECTED: Position {size} is over {self.cfg['max_position_per_token']:.0%} of portfolio"
            )
            return False
        return True
