"""
Ground-truth labeling for ETH candles.

Each candle is labeled from the candle that follows it: a move of the next
high above close * LONG_THRESHOLD is a long opportunity, a move of the next
low below close * SHORT_THRESHOLD is a short opportunity. When both happen
inside the same next candle the label is TIE_BREAK.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Sequence

# Candle field positions, [time, open, high, low, close, volume]
TIME, OPEN, HIGH, LOW, CLOSE, VOLUME = range(6)

LONG_THRESHOLD = 1.003   # +0.3%
SHORT_THRESHOLD = 0.997  # -0.3%


class Action(str, Enum):
    LONG = "long"
    SHORT = "short"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "Action":
        """Map a model's action string to an Action; anything other than an exact
        "long", "short" or "none" is NONE."""
        try:
            return cls(value)
        except ValueError:
            return cls.NONE

    @property
    def display(self) -> str:
        return self.value.capitalize()


# Simultaneous long/short conditions resolve to the conservative call
TIE_BREAK = Action.SHORT


def label_candles(
    data: Sequence[Sequence[float]],
    long_threshold: float = LONG_THRESHOLD,
    short_threshold: float = SHORT_THRESHOLD,
    tie_break: Action = TIE_BREAK,
) -> List[Action]:
    """
    Label every candle with the action its successor would have rewarded.

    The output has the same length as the input and its last element is
    always Action.NONE, since no future candle exists for it.
    """
    labels: List[Action] = []
    for current, nxt in zip(data, data[1:]):
        close = current[CLOSE]
        long_cond = nxt[HIGH] >= close * long_threshold
        short_cond = nxt[LOW] <= close * short_threshold

        if long_cond and short_cond:
            labels.append(tie_break)
        elif long_cond:
            labels.append(Action.LONG)
        elif short_cond:
            labels.append(Action.SHORT)
        else:
            labels.append(Action.NONE)

    if data:
        labels.append(Action.NONE)
    return labels
