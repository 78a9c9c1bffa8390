# signal_pipeline/cache.py
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

Encoder = Callable[[Any], bytes]
Decoder = Callable[[bytes], Any]


def json_encode(value: Any) -> bytes:
    return json.dumps(value).encode("utf-8")


def json_decode(raw: bytes) -> Any:
    return json.loads(raw.decode("utf-8"))


@dataclass(slots=True)
class CacheEntry:
    data: bytes
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache:
    """
    Keyed result cache with per-entry time-to-live.

    Values are stored serialized to bytes, so results of different types can share
    one instance. Hits and misses both return the decoded bytes. The default JSON
    codec rejects values it cannot represent (Decimal, datetime), pass a custom
    encode/decode pair for those. Expiry is lazy: entries are only checked when they are read, and
    a key that is never read again stays in memory.

    The lock is not held while the producer runs, so two concurrent misses on the
    same key both call the producer. That is fine for idempotent reads. Pass
    single_flight=True to have concurrent misses share a single producer call.
    """
    def __init__(self, single_flight: bool = False, clock: Callable[[], float] = time.monotonic):
        self.single_flight = single_flight
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._inflight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    async def execute(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl_seconds: float,
        encode: Encoder = json_encode,
        decode: Decoder = json_decode,
    ) -> Any:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._clock()):
                self.hits += 1
                return decode(entry.data)
            self.misses += 1

            waiter: Optional[asyncio.Future] = None
            if self.single_flight:
                waiter = self._inflight.get(key)
                if waiter is None:
                    self._inflight[key] = asyncio.get_running_loop().create_future()

        if waiter is not None:
            return decode(await asyncio.shield(waiter))

        try:
            result = await producer()
            data = encode(result)
        except BaseException as e:
            self._finish_inflight(key, error=e)
            raise

        async with self._lock:
            self._entries[key] = CacheEntry(data, self._clock() + ttl_seconds)
        self._finish_inflight(key, data=data)
        # Return what a hit would return so callers see one type per key.
        return decode(data)

    def _finish_inflight(self, key: str, data: Optional[bytes] = None, error: Optional[BaseException] = None):
        if not self.single_flight:
            return
        future = self._inflight.pop(key, None)
        if future is None or future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            future.cancel()
        elif error is not None:
            future.set_exception(error)
            # Mark retrieved so an unawaited failure does not warn at shutdown.
            future.exception()
        else:
            future.set_result(data)

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
