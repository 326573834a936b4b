"""
Lookback windows over aligned ETH/BTC/SOL candle series and their
serialization into the data block appended to the base prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

LOOKBACK_HOURS = 24

DATA_SECTION_HEADER = (
    "Data provided (hourly candles, format: [timestamp, open, high, low, close, volume]):"
)

CandleRows = Sequence[Sequence[float]]


@dataclass(frozen=True)
class Window:
    """Trailing candles for each symbol, ending just before `index`."""

    index: int
    eth: CandleRows
    btc: CandleRows
    sol: CandleRows

    def data_section(self) -> str:
        return build_data_section(self.eth, self.btc, self.sol)


def build_window(
    eth: CandleRows,
    btc: CandleRows,
    sol: CandleRows,
    index: int,
    lookback: int = LOOKBACK_HOURS,
) -> Optional[Window]:
    """Slice [index - lookback, index) from each series, or None if any series is too short."""
    if index < lookback:
        raise ValueError(f"window index {index} is smaller than lookback {lookback}")
    if len(eth) < index or len(btc) < index or len(sol) < index:
        return None

    start = index - lookback
    return Window(
        index=index,
        eth=eth[start:index],
        btc=btc[start:index],
        sol=sol[start:index],
    )


def iter_windows(
    eth: CandleRows,
    btc: CandleRows,
    sol: CandleRows,
    lookback: int = LOOKBACK_HOURS,
) -> Iterator[Window]:
    """Yield every eligible window, indexed over the ETH series."""
    for index in range(lookback, len(eth)):
        window = build_window(eth, btc, sol, index, lookback)
        if window is not None:
            yield window


def format_candles(data: CandleRows) -> str:
    rows = [
        f"[{c[0]:.2f},{c[1]:.2f},{c[2]:.2f},{c[3]:.2f},{c[4]:.2f},{c[5]:.6f}]"
        for c in data
    ]
    return "[" + ",".join(rows) + "]"


def build_data_section(eth: CandleRows, btc: CandleRows, sol: CandleRows) -> str:
    """Fixed-precision text block; identical numbers always give identical text."""
    return (
        f"{DATA_SECTION_HEADER}\n"
        f"ETH: {format_candles(eth)}\n"
        f"BTC: {format_candles(btc)}\n"
        f"SOL: {format_candles(sol)}\n"
    )


def compose_prompt(base_prompt: str, data_section: str) -> str:
    return f"{base_prompt}\n\n{data_section}"
