# signal_pipeline/signal_engine.py
import logging
from decimal import Decimal
from typing import Optional

from .models import MarketSignal, MarketSnapshot, SignalType, ONE, ZERO, to_decimal


class SignalGenerator:
    """
    Compares the newest snapshot of an asset with the one stored right before it
    and emits a PriceSpike, PriceDrop or VolumeSurge signal when a threshold is crossed.

    Priority is fixed: price moves win over volume surges.
    Confidence is NOT clamped. A value outside [0, 1] means the thresholds and
    weights are misconfigured, and MarketSignal.validate() rejects it.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        cfg = config["signals"]
        self.price_change_threshold = to_decimal(cfg["price_change_threshold"])
        self.volume_surge_threshold = to_decimal(cfg["volume_surge_threshold"])
        self.base_confidence = to_decimal(cfg["base_confidence"])
        self.price_weight = to_decimal(cfg["price_weight"])
        self.volume_weight = to_decimal(cfg["volume_weight"])
        self.logger = logger

    @staticmethod
    def price_change(current: MarketSnapshot, previous: MarketSnapshot) -> Decimal:
        return (current.price - previous.price) / previous.price

    @staticmethod
    def volume_change(current: MarketSnapshot, previous: MarketSnapshot) -> Optional[Decimal]:
        if current.volume_24h is None or previous.volume_24h is None:
            return None
        # Zero previous volume only replaces the denominator.
        denominator = previous.volume_24h if previous.volume_24h != ZERO else ONE
        return (current.volume_24h - previous.volume_24h) / denominator

    def confidence(self, price_change: Decimal, volume_change: Optional[Decimal]) -> Decimal:
        volume_term = volume_change if volume_change is not None else ZERO
        return self.base_confidence + price_change * self.price_weight + volume_term * self.volume_weight

    def generate(
        self,
        current: MarketSnapshot,
        previous: Optional[MarketSnapshot],
        risk_score: float = 0.5,
    ) -> Optional[MarketSignal]:
        """Returns a signal, or None on cold start or when no threshold is crossed."""
        if previous is None:
            self.logger.debug(f"{current.symbol}: no previous snapshot, skipping signal generation")
            return None

        price_change = self.price_change(current, previous)
        volume_change = self.volume_change(current, previous)

        if price_change > self.price_change_threshold:
            kind, driver = SignalType.PRICE_SPIKE, price_change
        elif price_change < -self.price_change_threshold:
            kind, driver = SignalType.PRICE_DROP, abs(price_change)
        elif volume_change is not None and volume_change > self.volume_surge_threshold:
            kind, driver = SignalType.VOLUME_SURGE, price_change
        else:
            return None

        signal = MarketSignal(
            asset_address=current.asset_address,
            signal_type=kind,
            price=current.price,
            confidence=self.confidence(driver, volume_change),
            risk_score=to_decimal(risk_score),
            timestamp=current.timestamp,
            price_change_24h=price_change,
            volume_change_24h=volume_change,
            metadata={
                "symbol": current.symbol,
                "previous_price": str(previous.price),
                "previous_timestamp": previous.timestamp.isoformat(),
            },
        )
        self.logger.info(
            f"📈 SIGNAL {kind.value.upper()} {current.symbol} | "
            f"Price Δ {float(price_change):+.2%} | Conf {float(signal.confidence):.3f}"
        )
        return signal

    def generate_validated(
        self,
        current: MarketSnapshot,
        previous: Optional[MarketSnapshot],
        risk_score: float = 0.5,
    ) -> Optional[MarketSignal]:
        """Same as generate() but raises ValidationFailure for out-of-range scores."""
        signal = self.generate(current, previous, risk_score)
        if signal is None:
            return None
        return signal.validate()
