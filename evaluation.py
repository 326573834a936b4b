"""
Evaluation pipeline.

Scores a base prompt over every eligible lookback window:
1. Label the ETH series
2. Build the data block for each window and append it to the base prompt
3. Query the evaluator model for all windows, at most `max_concurrency` in flight
4. Parse each reply and compare its action with the label of the last observed candle
5. Aggregate accuracy and the list of failures once every window has completed
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ai_providers import AIProvider, strip_code_fences
from errors import InsufficientData, MalformedModelResponse
from labeler import LONG_THRESHOLD, SHORT_THRESHOLD, TIE_BREAK, Action, label_candles
from window_builder import LOOKBACK_HOURS, Window, compose_prompt, iter_windows

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 20


class MalformedResponsePolicy(str, Enum):
    ABORT = "abort"
    COUNT_AS_FAILURE = "count_as_failure"


@dataclass
class PredictionResult:
    window_index: int
    predicted_action: Optional[Action]  # None when the reply could not be parsed
    rationale: str
    label_action: Action
    raw_response: str = ""
    malformed: bool = False

    @property
    def is_correct(self) -> bool:
        return not self.malformed and self.predicted_action == self.label_action


@dataclass
class EvaluationResult:
    accuracy: float
    failures: List[PredictionResult] = field(default_factory=list)
    total: int = 0
    correct: int = 0


def parse_prediction(response_text: str) -> Tuple[Action, str]:
    """
    Parse a model reply of the form {"action": "...", "rationale": "..."}.

    Code fences are stripped first. Raises MalformedModelResponse when the
    text is not a JSON object or has no string `action` field.
    """
    cleaned = strip_code_fences(response_text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedModelResponse(
            f"Response not valid JSON: {cleaned}", raw_response=response_text
        ) from exc

    if not isinstance(payload, dict):
        raise MalformedModelResponse(
            f"Response is not a JSON object: {cleaned}", raw_response=response_text
        )

    action = payload.get("action")
    if not isinstance(action, str):
        raise MalformedModelResponse(
            "Missing 'action' field in response", raw_response=response_text
        )

    rationale = payload.get("rationale")
    if not isinstance(rationale, str):
        rationale = ""

    return Action.parse(action), rationale


class Evaluator:
    """Backtests a base prompt against the labeler using the evaluator model."""

    def __init__(
        self,
        ai_provider: AIProvider,
        lookback: int = LOOKBACK_HOURS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        long_threshold: float = LONG_THRESHOLD,
        short_threshold: float = SHORT_THRESHOLD,
        tie_break: Action = TIE_BREAK,
        malformed_policy: MalformedResponsePolicy = MalformedResponsePolicy.ABORT,
    ):
        self.ai_provider = ai_provider
        self.lookback = lookback
        self.max_concurrency = max_concurrency
        self.long_threshold = long_threshold
        self.short_threshold = short_threshold
        self.tie_break = tie_break
        self.malformed_policy = malformed_policy

    async def evaluate(
        self,
        base_prompt: str,
        eth: Sequence[Sequence[float]],
        btc: Sequence[Sequence[float]],
        sol: Sequence[Sequence[float]],
    ) -> EvaluationResult:
        if len(eth) < self.lookback:
            raise InsufficientData(
                f"Not enough ETH candles to perform backtesting "
                f"({len(eth)} < {self.lookback})"
            )

        labels = label_candles(
            eth,
            long_threshold=self.long_threshold,
            short_threshold=self.short_threshold,
            tie_break=self.tie_break,
        )
        windows = list(iter_windows(eth, btc, sol, self.lookback))
        logger.info("Evaluating %d windows (max %d concurrent)", len(windows), self.max_concurrency)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.ensure_future(
                self._evaluate_window(semaphore, base_prompt, window, labels[window.index - 1])
            )
            for window in windows
        ]

        results: List[PredictionResult] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                results.append(await next_done)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        correct = sum(1 for r in results if r.is_correct)
        total = len(results)
        accuracy = correct / total if total > 0 else 0.0
        failures = sorted(
            (r for r in results if not r.is_correct), key=lambda r: r.window_index
        )

        logger.info("Backtesting complete. Accuracy: %.2f%%", accuracy * 100.0)
        if failures:
            logger.debug(
                "Failures: %s",
                [(f.window_index, f.predicted_action, f.label_action) for f in failures],
            )

        return EvaluationResult(
            accuracy=accuracy,
            failures=failures,
            total=total,
            correct=correct,
        )

    async def _evaluate_window(
        self,
        semaphore: asyncio.Semaphore,
        base_prompt: str,
        window: Window,
        label: Action,
    ) -> PredictionResult:
        prompt = compose_prompt(base_prompt, window.data_section())
        async with semaphore:
            response = await self.ai_provider.generate(prompt)

        try:
            predicted, rationale = parse_prediction(response)
        except MalformedModelResponse:
            if self.malformed_policy is MalformedResponsePolicy.ABORT:
                raise
            logger.warning("Window %d: unparseable model response counted as incorrect", window.index)
            return PredictionResult(
                window_index=window.index,
                predicted_action=None,
                rationale="",
                label_action=label,
                raw_response=response,
                malformed=True,
            )

        return PredictionResult(
            window_index=window.index,
            predicted_action=predicted,
            rationale=rationale,
            label_action=label,
            raw_response=response,
        )
