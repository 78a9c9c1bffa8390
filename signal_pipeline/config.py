# signal_pipeline/config.py
import copy
import os
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG: Dict[str, Any] = {
    "system": {
        "environment": "testnet",
        "dry_run": True,
        "poll_interval_seconds": 60,
        "log_level": "INFO",
    },
    "exchange": {
        "name": "binance",
        "api_key": "",
        "secret": "",
        "network_timeout_ms": 10000,
    },
    "assets": ["SOL/USDT", "ETH/USDT", "BTC/USDT"],
    "rate_limit": {"rate": 5.0, "burst": 10},
    "cache": {
        "snapshot_ttl_seconds": 5,
        "price_series_ttl_seconds": 60,
        "single_flight": False,
    },
    "retry": {"max_attempts": 3, "base_delay_seconds": 0.5},
    "market": {"liquidity_depth_pct": 0.02, "market_trend": "Neutral", "high_volume_change_pct": 50.0},
    "indicators": {
        "timeframe": "4h",
        "lookback": 100,
        "rsi_period": 14,
        "macd_fast": 12,
        "macd_slow": 26,
        "macd_signal": 9,
        "bb_period": 20,
        "bb_std_dev": 2.0,
    },
    "signals": {
        "price_change_threshold": 0.05,
        "volume_surge_threshold": 0.2,
        "base_confidence": 0.5,
        "price_weight": 0.3,
        "volume_weight": 0.2,
    },
    "risk": {
        "weights": {
            "liquidity": 0.30,
            "volatility": 0.20,
            "market": 0.15,
            "technical": 0.20,
            "sentiment": 0.15,
        },
        "min_liquidity_usd": 5000.0,
        "min_liquidity_ratio": 0.1,
        "sector_nudge": 0.1,
        "trend_nudges": {"Bullish": 0.2, "Bearish": -0.2},
        "volume_profile_nudges": {"High": 0.1},
        "signal_type_nudges": {
            "Strong Uptrend": 0.2,
            "Strong Downtrend": -0.1,
            "High Volatility": -0.2,
            "Ranging": 0.1,
        },
        "min_position_size": 0.1,
        "max_position_size": 1.0,
        "max_position_per_token": 0.2,
        "portfolio_value": 10.0,
    },
    "strategy": {
        "buy_min_risk_score": 0.7,
        "buy_min_trend": 0.6,
        "sell_max_risk_score": 0.3,
        "sell_max_trend": 0.2,
        "base_position_size": 1.0,
        "min_position_size": 0.1,
        "max_position_size": 1.0,
        "stop_loss": 0.1,
        "tight_stop_loss": 0.05,
        "take_profits": [0.15, 0.25, 0.4],
        "max_slippage": 0.01,
        "entry_type": "Market",
    },
    "execution": {
        "max_slippage": 0.02,
        "min_execution_interval_seconds": 300,
    },
    "audit": {"trade_log": "logs/audit.csv"},
}


def deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = "config.yaml") -> dict:
    """Reads YAML over the defaults and validates. Raises ConfigError on any problem."""
    raw: dict = {}
    if path and os.path.exists(path):
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
    config = deep_merge(DEFAULT_CONFIG, raw)
    validate_config(config)
    return config


def validate_config(config: dict):
    def positive(section: str, key: str):
        value = config[section][key]
        if not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"{section}.{key} must be a positive number, got {value!r}")

    positive("rate_limit", "rate")
    positive("rate_limit", "burst")
    positive("cache", "snapshot_ttl_seconds")
    positive("cache", "price_series_ttl_seconds")
    positive("retry", "max_attempts")
    positive("signals", "price_change_threshold")
    positive("signals", "volume_surge_threshold")
    positive("execution", "max_slippage")
    positive("system", "poll_interval_seconds")
    positive("indicators", "lookback")
    positive("risk", "portfolio_value")

    if config["execution"]["min_execution_interval_seconds"] < 0:
        raise ConfigError("execution.min_execution_interval_seconds must not be negative")

    weights = config["risk"]["weights"]
    if any(w < 0 for w in weights.values()):
        raise ConfigError(f"risk.weights must be non-negative: {weights}")
    total = sum(weights.values())
    if total > 1.0 + 1e-9:
        raise ConfigError(f"risk.weights sum to {total:.4f}, must not exceed 1.0")

    strategy = config["strategy"]
    if strategy["max_slippage"] > config["execution"]["max_slippage"]:
        raise ConfigError("strategy.max_slippage exceeds execution.max_slippage; every trade would be rejected")
    widest_stop = max(strategy["stop_loss"], strategy["tight_stop_loss"])
    if not strategy["take_profits"] or min(strategy["take_profits"]) <= widest_stop:
        raise ConfigError(f"strategy.take_profits must all be above the stop loss ({widest_stop})")
    if not config["assets"]:
        raise ConfigError("assets must list at least one market")
