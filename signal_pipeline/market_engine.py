# signal_pipeline/market_engine.py
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import ccxt.async_support as ccxt

from .cache import TTLCache, json_decode, json_encode
from .errors import TransientUpstreamError
from .models import MarketSnapshot, to_decimal, utcnow
from .rate_limiter import RateLimiter


class MarketEngine:
    """
    Market data source backed by a ccxt exchange client.
    Responsible for connection diagnostics and for fetching snapshots and price
    series. Every upstream call goes through the shared RateLimiter and TTLCache
    and is retried with exponential backoff on network errors.
    """
    def __init__(
        self,
        config: dict,
        logger: logging.Logger,
        limiter: RateLimiter,
        cache: TTLCache,
        exchange=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cfg = config
        self.logger = logger
        self.limiter = limiter
        self.cache = cache
        self.exchange = exchange
        self._sleep = sleep
        self.snapshot_ttl = config["cache"]["snapshot_ttl_seconds"]
        self.series_ttl = config["cache"]["price_series_ttl_seconds"]
        self.timeframe = config["indicators"]["timeframe"]
        self.depth_pct = config["market"]["liquidity_depth_pct"]
        self.max_attempts = config["retry"]["max_attempts"]
        self.base_delay = config["retry"]["base_delay_seconds"]

    async def initialize(self) -> bool:
        """
        Connects to the exchange and performs a connectivity test.
        Returns False if the diagnostic fails.
        """
        ex_cfg = self.cfg["exchange"]
        name = ex_cfg["name"]
        self.logger.info("📡 TESTING EXCHANGE CONNECTION...")

        if self.exchange is None:
            ex_class = getattr(ccxt, name)
            self.exchange = ex_class({
                'apiKey': ex_cfg.get('api_key', ''),
                'secret': ex_cfg.get('secret', ''),
                'password': ex_cfg.get('password', ''),  # OKX/KuCoin require password
                'timeout': ex_cfg.get('network_timeout_ms', 10000),
                'enableRateLimit': True,
                'options': {'defaultType': 'spot'}
            })
            if self.cfg['system']['environment'] == 'testnet':
                self.exchange.set_sandbox_mode(True)

        try:
            # --- DIAGNOSTIC PHASE 1: PUBLIC API ---
            await self.exchange.load_markets()

            # --- DIAGNOSTIC PHASE 2: PRIVATE API (live trading only) ---
            if not self.cfg['system']['dry_run']:
                await self.exchange.fetch_balance({'type': 'spot'})

            self.logger.info(f"   ✅ {name.upper():<10} | Markets: {len(self.exchange.markets or {})}")
            return True

        except ccxt.AuthenticationError:
            self.logger.critical(f"   ❌ {name.upper():<10} | AUTH FAILED: Invalid API Key or Secret.")
        except ccxt.PermissionDenied:
            self.logger.critical(f"   ❌ {name.upper():<10} | PERMISSION DENIED: Key missing 'Spot Trading' or 'IP Whitelist' permissions.")
        except ccxt.RequestTimeout:
            self.logger.error(f"   ❌ {name.upper():<10} | TIMEOUT: Exchange API is slow or down.")
        except ccxt.ExchangeNotAvailable:
            self.logger.error(f"   ❌ {name.upper():<10} | MAINTENANCE: Exchange is currently offline.")
        except ccxt.BaseError as e:
            self.logger.critical(f"   ❌ {name.upper():<10} | UNKNOWN ERROR: {str(e)}")

        await self.exchange.close()
        return False

    async def _with_retry(self, label: str, call: Callable[[], Awaitable]):
        """Runs one upstream call behind the rate limiter, retrying transient failures."""
        for attempt in range(self.max_attempts):
            await self.limiter.throttle()
            try:
                return await call()
            except ccxt.NetworkError as e:
                # RateLimitExceeded, RequestTimeout and ExchangeNotAvailable all derive from NetworkError
                if attempt == self.max_attempts - 1:
                    raise TransientUpstreamError(f"{label} failed after {self.max_attempts} attempts: {e}") from e
                delay = self.base_delay * (2 ** attempt)
                self.logger.warning(f"⚠️ {label} attempt {attempt + 1} failed ({type(e).__name__}), retrying in {delay:.2f}s")
                await self._sleep(delay)

    async def fetch_snapshot(self, asset: str) -> MarketSnapshot:
        async def produce():
            ticker = await self._with_retry(f"fetch_ticker {asset}", lambda: self.exchange.fetch_ticker(asset))
            book = await self._with_retry(f"fetch_order_book {asset}", lambda: self.exchange.fetch_order_book(asset))
            return self._build_snapshot(asset, ticker, book)

        return await self.cache.execute(
            f"snapshot:{asset}",
            produce,
            self.snapshot_ttl,
            encode=lambda snap: json_encode(snap.to_dict()),
            decode=lambda raw: MarketSnapshot.from_dict(json_decode(raw)),
        )

    async def fetch_price_series(self, asset: str, lookback: int) -> List[float]:
        """Closing prices, oldest first."""
        async def produce():
            candles = await self._with_retry(
                f"fetch_ohlcv {asset}",
                lambda: self.exchange.fetch_ohlcv(asset, self.timeframe, limit=lookback),
            )
            return [float(c[4]) for c in candles]

        return await self.cache.execute(f"prices:{asset}:{self.timeframe}:{lookback}", produce, self.series_ttl)

    def _build_snapshot(self, asset: str, ticker: dict, book: Optional[dict]) -> MarketSnapshot:
        price = ticker.get("last") or ticker.get("close")
        if not price:
            raise TransientUpstreamError(f"Ticker for {asset} has no price")

        return MarketSnapshot(
            asset_address=asset,
            symbol=asset.split('/')[0],
            price=to_decimal(price),
            timestamp=utcnow(),
            volume_24h=to_decimal(ticker.get("quoteVolume")),
            liquidity=to_decimal(round(self._book_liquidity(float(price), book), 2)) if book else None,
            price_change_24h=float(ticker.get("percentage") or 0.0),
        )

    def _book_liquidity(self, price: float, book: dict) -> float:
        """Quote notional resting within depth_pct of the last price on both sides."""
        low, high = price * (1 - self.depth_pct), price * (1 + self.depth_pct)
        total = 0.0
        for level_price, amount, *_ in book.get("bids", []):
            if level_price >= low:
                total += level_price * amount
        for level_price, amount, *_ in book.get("asks", []):
            if level_price <= high:
                total += level_price * amount
        return total

    async def shutdown(self):
        """Gracefully closes the REST session."""
        if self.exchange is not None:
            await self.exchange.close()
