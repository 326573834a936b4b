"""
Hourly candle retrieval with a per-symbol JSON cache.

The exchange returns rows as [time, low, high, open, close, volume], newest
first. The cache stores those rows exactly as received; callers get
chronological Candle tuples in [time, open, high, low, close, volume] order.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime
from typing import List, NamedTuple, Sequence, Tuple

import requests
from pydantic import TypeAdapter, ValidationError

from errors import CacheCorrupt, DataUnavailable
from history import atomic_write

logger = logging.getLogger(__name__)

COINBASE_CANDLES_URL = "https://api.exchange.coinbase.com/products/{symbol}-USD/candles"
GRANULARITY_SECONDS = 3600
REQUEST_TIMEOUT = 30

RawCandle = Tuple[float, float, float, float, float, float]
_raw_candles_adapter = TypeAdapter(List[RawCandle])


class Candle(NamedTuple):
    time: float
    open: float
    high: float
    low: float
    close: float
    volume: float


def normalize_candles(raw: Sequence[Sequence[float]]) -> List[Candle]:
    """Reverse to chronological order and reorder fields to OHLCV."""
    return [
        Candle(time=time, open=open_, high=high, low=low, close=close, volume=volume)
        for time, low, high, open_, close, volume in reversed(raw)
    ]


class CoinbaseCandleClient:
    """Fetch hourly candles from the Coinbase Exchange public API"""

    def __init__(self, timeout: int = REQUEST_TIMEOUT, session: requests.Session = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_candles(self, symbol: str, start: datetime, end: datetime) -> List[list]:
        """Return the decoded JSON rows exactly as the exchange sent them."""
        url = COINBASE_CANDLES_URL.format(symbol=symbol.upper())
        params = {
            "start": int(start.timestamp()),
            "end": int(end.timestamp()),
            "granularity": GRANULARITY_SECONDS,
        }
        try:
            response = self.session.get(
                url,
                params=params,
                headers={"User-Agent": "Mozilla/5.0"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DataUnavailable(f"Candle request for {symbol} failed: {exc}") from exc

        if response.status_code != 200:
            raise DataUnavailable(
                f"Candle request for {symbol} returned {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
            _raw_candles_adapter.validate_python(payload)
        except (ValueError, ValidationError) as exc:
            raise DataUnavailable(f"Candle response for {symbol} could not be decoded: {exc}") from exc
        return payload

    async def fetch(self, symbol: str, start: datetime, end: datetime) -> List[list]:
        return await asyncio.to_thread(self.fetch_candles, symbol, start, end)


class CandleCache:
    """
    Load-or-fetch candles per symbol.

    A cache hit is returned as-is regardless of the requested range.
    """

    def __init__(self, cache_dir: str = "cache", client: CoinbaseCandleClient = None):
        self.cache_dir = cache_dir
        self.client = client or CoinbaseCandleClient()

    def cache_path(self, symbol: str) -> str:
        return os.path.join(self.cache_dir, f"{symbol.upper()}_data.json")

    async def load_or_fetch_raw(self, symbol: str, start: datetime, end: datetime) -> List[RawCandle]:
        path = self.cache_path(symbol)
        if os.path.exists(path):
            logger.debug("Loading %s candles from cache %s", symbol, path)
            try:
                with open(path, "r") as f:
                    return _raw_candles_adapter.validate_python(json.load(f))
            except (OSError, ValueError, ValidationError) as exc:
                raise CacheCorrupt(f"Failed to deserialize cached candle data {path}: {exc}") from exc

        logger.info("Fetching %s candles %s -> %s", symbol, start.isoformat(), end.isoformat())
        payload = await self.client.fetch(symbol, start, end)

        try:
            atomic_write(path, json.dumps(payload))
        except OSError as exc:
            raise CacheCorrupt(f"Failed to write candle cache {path}: {exc}") from exc
        return _raw_candles_adapter.validate_python(payload)

    async def load_or_fetch(self, symbol: str, start: datetime, end: datetime) -> List[Candle]:
        return normalize_candles(await self.load_or_fetch_raw(symbol, start, end))
