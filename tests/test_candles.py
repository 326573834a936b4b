import json
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

import requests

from candles import Candle, CandleCache, CoinbaseCandleClient, normalize_candles
from errors import CacheCorrupt, DataUnavailable

# Exchange order: [time, low, high, open, close, volume], newest first
RAW_CANDLES = [
    [1732849200, 3591.36, 3603.0, 3599.99, 3594.88, 415.86094626],
    [1732845600, 3564.44, 3600.0, 3565.45, 3599.99, 4979.85077974],
]

END = datetime(2024, 11, 29, tzinfo=timezone.utc)
START = END - timedelta(hours=96)


class FakeClient:
    def __init__(self, candles=None, error=None):
        self.candles = candles or RAW_CANDLES
        self.error = error
        self.calls = []

    async def fetch(self, symbol, start, end):
        self.calls.append((symbol, start, end))
        if self.error:
            raise self.error
        return [list(c) for c in self.candles]


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self.payload = payload
        self.text = text

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append((url, params))
        if self.error:
            raise self.error
        return self.response


class NormalizeCandlesTests(unittest.TestCase):
    def test_reverses_and_reorders_fields(self):
        candles = normalize_candles(RAW_CANDLES)

        self.assertEqual(
            candles[0],
            Candle(time=1732845600, open=3565.45, high=3600.0, low=3564.44, close=3599.99, volume=4979.85077974),
        )
        self.assertEqual(candles[1].time, 1732849200)
        self.assertEqual(candles[1].close, 3594.88)
        self.assertEqual(candles[1].low, 3591.36)


class CandleCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.cache_dir = os.path.join(self.tmp.name, "cache")

    def tearDown(self):
        self.tmp.cleanup()

    async def test_miss_fetches_and_persists_raw_rows(self):
        client = FakeClient()
        cache = CandleCache(self.cache_dir, client)

        candles = await cache.load_or_fetch("eth", START, END)

        self.assertEqual(len(client.calls), 1)
        self.assertEqual(candles[0].open, 3565.45)
        with open(os.path.join(self.cache_dir, "ETH_data.json")) as f:
            self.assertEqual(json.load(f), RAW_CANDLES)

    async def test_hit_skips_fetch_even_for_a_different_range(self):
        client = FakeClient()
        cache = CandleCache(self.cache_dir, client)
        await cache.load_or_fetch("BTC", START, END)

        again = await cache.load_or_fetch("BTC", START - timedelta(days=30), END - timedelta(days=30))

        self.assertEqual(len(client.calls), 1)
        self.assertEqual(len(again), 2)

    async def test_corrupt_cache_raises(self):
        os.makedirs(self.cache_dir)
        with open(os.path.join(self.cache_dir, "SOL_data.json"), "w") as f:
            f.write("[[1, 2, 3]")

        with self.assertRaises(CacheCorrupt):
            await CandleCache(self.cache_dir, FakeClient()).load_or_fetch("SOL", START, END)

    async def test_wrong_row_width_is_corrupt(self):
        os.makedirs(self.cache_dir)
        with open(os.path.join(self.cache_dir, "SOL_data.json"), "w") as f:
            json.dump([[1, 2, 3]], f)

        with self.assertRaises(CacheCorrupt):
            await CandleCache(self.cache_dir, FakeClient()).load_or_fetch("SOL", START, END)

    async def test_fetch_failure_leaves_no_cache_file(self):
        cache = CandleCache(self.cache_dir, FakeClient(error=DataUnavailable("down")))

        with self.assertRaises(DataUnavailable):
            await cache.load_or_fetch("ETH", START, END)
        self.assertFalse(os.path.exists(cache.cache_path("ETH")))

    async def test_persisted_rows_keep_integer_timestamps(self):
        cache = CandleCache(self.cache_dir, FakeClient())

        await cache.load_or_fetch("ETH", START, END)

        with open(cache.cache_path("ETH")) as f:
            text = f.read()
        self.assertIn("1732849200,", text)
        self.assertNotIn("1732849200.0", text)
        self.assertIsInstance(json.loads(text)[0][0], int)
        self.assertEqual(os.listdir(self.cache_dir), ["ETH_data.json"])

    async def test_unwritable_cache_dir_raises_typed_error(self):
        with open(self.cache_dir, "w") as f:
            f.write("not a directory")
        cache = CandleCache(self.cache_dir, FakeClient())

        with self.assertRaises(CacheCorrupt) as ctx:
            await cache.load_or_fetch("ETH", START, END)
        self.assertIn(cache.cache_path("ETH"), str(ctx.exception))
        self.assertEqual(os.listdir(self.tmp.name), ["cache"])


class CoinbaseCandleClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_successful_fetch_returns_rows(self):
        session = FakeSession(FakeResponse(200, payload=RAW_CANDLES))
        client = CoinbaseCandleClient(session=session)

        rows = await client.fetch("eth", START, END)

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0][4], 3594.88)
        url, params = session.requests[0]
        self.assertEqual(url, "https://api.exchange.coinbase.com/products/ETH-USD/candles")
        self.assertEqual(params["granularity"], 3600)
        self.assertEqual(params["end"], int(END.timestamp()))

    def test_non_200_raises(self):
        client = CoinbaseCandleClient(session=FakeSession(FakeResponse(404, text="NotFound")))

        with self.assertRaises(DataUnavailable) as ctx:
            client.fetch_candles("ETH", START, END)
        self.assertIn("404", str(ctx.exception))

    def test_transport_error_raises(self):
        client = CoinbaseCandleClient(session=FakeSession(error=requests.ConnectionError("refused")))

        with self.assertRaises(DataUnavailable):
            client.fetch_candles("ETH", START, END)

    def test_unexpected_payload_raises(self):
        client = CoinbaseCandleClient(session=FakeSession(FakeResponse(200, payload={"message": "bad"})))

        with self.assertRaises(DataUnavailable):
            client.fetch_candles("ETH", START, END)


if __name__ == "__main__":
    unittest.main()
