"""
Convergence driver: repeats {evaluate -> record -> improve} until the base
prompt reaches the accuracy threshold or the iteration budget runs out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple

from ai_providers import get_provider
from candles import Candle, CandleCache
from evaluation import Evaluator, PredictionResult
from history import PromptHistory, PromptStore
from prompt_improver import PromptImprover
from settings import Settings

logger = logging.getLogger(__name__)

SYMBOLS = ("ETH", "BTC", "SOL")

MarketData = Tuple[List[Candle], List[Candle], List[Candle]]


class ConvergenceOutcome(str, Enum):
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class PassReport:
    iteration: int
    accuracy: float
    total: int
    failures: List[PredictionResult]
    prompt: str
    improved_prompt: Optional[str] = None


@dataclass
class ConvergenceReport:
    outcome: ConvergenceOutcome
    iterations: int
    final_prompt: str
    passes: List[PassReport] = field(default_factory=list)

    @property
    def best_accuracy(self) -> float:
        return max((p.accuracy for p in self.passes), default=0.0)


class ConvergenceDriver:

    def __init__(
        self,
        candle_source: CandleCache,
        evaluator: Evaluator,
        improver: PromptImprover,
        history: PromptHistory,
        prompt_store: PromptStore,
        accuracy_threshold: float = 0.7,
        max_iterations: int = 10,
        improve_after_convergence: bool = True,
        data_end_offset_hours: int = 48,
        data_span_hours: int = 96,
    ):
        self.candle_source = candle_source
        self.evaluator = evaluator
        self.improver = improver
        self.history = history
        self.prompt_store = prompt_store
        self.accuracy_threshold = accuracy_threshold
        self.max_iterations = max_iterations
        self.improve_after_convergence = improve_after_convergence
        self.data_end_offset_hours = data_end_offset_hours
        self.data_span_hours = data_span_hours

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConvergenceDriver":
        api_key = settings.require_api_key()
        eval_provider = get_provider(
            api_key=api_key,
            model=settings.eval_model,
            provider=settings.ai_provider,
            timeout=settings.model_timeout,
        )
        improver_provider = get_provider(
            api_key=api_key,
            model=settings.improver_model,
            provider=settings.ai_provider,
            timeout=settings.model_timeout,
        )
        return cls(
            candle_source=CandleCache(settings.cache_dir),
            evaluator=Evaluator(
                eval_provider,
                lookback=settings.lookback,
                max_concurrency=settings.max_concurrency,
                long_threshold=settings.long_threshold,
                short_threshold=settings.short_threshold,
                tie_break=settings.tie_break,
                malformed_policy=settings.malformed_policy,
            ),
            improver=PromptImprover(improver_provider),
            history=PromptHistory(settings.history_file, limit=settings.history_limit),
            prompt_store=PromptStore(settings.prompt_file),
            accuracy_threshold=settings.accuracy_threshold,
            max_iterations=settings.max_iterations,
            improve_after_convergence=settings.improve_after_convergence,
            data_end_offset_hours=settings.data_end_offset_hours,
            data_span_hours=settings.data_span_hours,
        )

    def data_range(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        now = now or datetime.now(tz=timezone.utc)
        end = now - timedelta(hours=self.data_end_offset_hours)
        start = end - timedelta(hours=self.data_span_hours)
        return start, end

    async def load_market_data(self) -> MarketData:
        start, end = self.data_range()
        eth, btc, sol = [
            await self.candle_source.load_or_fetch(symbol, start, end) for symbol in SYMBOLS
        ]
        logger.info("Loaded candles: ETH=%d BTC=%d SOL=%d", len(eth), len(btc), len(sol))
        return eth, btc, sol

    async def run_pass(
        self,
        base_prompt: str,
        market_data: MarketData,
        iteration: int = 1,
        improve: Optional[bool] = None,
    ) -> PassReport:
        """
        One backtest pass: evaluate, record the score, and rewrite the prompt
        file when there were failures. `improve=None` applies the configured
        post-convergence rule; True/False force it.
        """
        eth, btc, sol = market_data
        result = await self.evaluator.evaluate(base_prompt, eth, btc, sol)

        records = self.history.append(base_prompt, result.accuracy)

        report = PassReport(
            iteration=iteration,
            accuracy=result.accuracy,
            total=result.total,
            failures=result.failures,
            prompt=base_prompt,
        )

        if improve is None:
            improve = self.improve_after_convergence or result.accuracy < self.accuracy_threshold
        if result.failures and improve:
            improved = await self.improver.improve(base_prompt, result.failures, records)
            self.prompt_store.write(improved)
            logger.info("Prompt improved and saved to %s", self.prompt_store.path)
            report.improved_prompt = improved

        return report

    async def run(self) -> ConvergenceReport:
        base_prompt = self.prompt_store.read()
        market_data = await self.load_market_data()

        passes: List[PassReport] = []
        for iteration in range(1, self.max_iterations + 1):
            report = await self.run_pass(base_prompt, market_data, iteration)
            passes.append(report)
            logger.info(
                "Iteration %d/%d finished with accuracy %.2f%%",
                iteration, self.max_iterations, report.accuracy * 100.0,
            )

            if report.improved_prompt is not None:
                base_prompt = report.improved_prompt

            if report.accuracy >= self.accuracy_threshold:
                logger.info("Accuracy threshold %.2f%% reached", self.accuracy_threshold * 100.0)
                return ConvergenceReport(
                    outcome=ConvergenceOutcome.CONVERGED,
                    iterations=iteration,
                    final_prompt=base_prompt,
                    passes=passes,
                )

        logger.info("Iteration budget of %d exhausted without convergence", self.max_iterations)
        return ConvergenceReport(
            outcome=ConvergenceOutcome.EXHAUSTED,
            iterations=self.max_iterations,
            final_prompt=base_prompt,
            passes=passes,
        )
