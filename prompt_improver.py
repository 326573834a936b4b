"""
Failure-driven prompt rewriting.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ai_providers import AIProvider
from backtest_prompts import (
    IMPROVEMENT_GOALS,
    IMPROVEMENT_HISTORY_HEADER,
    IMPROVEMENT_INTRO,
    IMPROVEMENT_ORIGINAL_PROMPT,
)
from errors import MalformedModelResponse
from evaluation import PredictionResult
from history import PromptRecord

logger = logging.getLogger(__name__)

MAX_FAILURE_EXAMPLES = 10
PROMPT_SNIPPET_CHARS = 50


def _describe_failure(failure: PredictionResult) -> str:
    if failure.malformed or failure.predicted_action is None:
        predicted = "an unparseable response"
    else:
        predicted = failure.predicted_action.display
    return (
        f"Window {failure.window_index}: Model predicted {predicted}, "
        f"but the correct action was {failure.label_action.display}. "
        f"Model's rationale: {failure.rationale}"
    )


def _describe_record(record: PromptRecord) -> str:
    snippet = record.prompt.replace("\n", " ")[:PROMPT_SNIPPET_CHARS]
    return f"- Prompt score: {record.score * 100.0:.2f}% | Prompt snippet: {snippet}..."


def build_improvement_prompt(
    base_prompt: str,
    failures: Sequence[PredictionResult],
    history: Sequence[PromptRecord],
    max_failures: int = MAX_FAILURE_EXAMPLES,
) -> str:
    lines: List[str] = [IMPROVEMENT_INTRO]
    lines.extend(_describe_failure(f) + "\n" for f in failures[:max_failures])
    lines.append(IMPROVEMENT_HISTORY_HEADER)
    lines.extend(_describe_record(r) + "\n" for r in history)
    lines.append(IMPROVEMENT_GOALS)
    lines.append(IMPROVEMENT_ORIGINAL_PROMPT.replace("{base_prompt}", base_prompt))
    return "".join(lines)


class PromptImprover:
    """Asks the improver model for a revised base prompt."""

    def __init__(self, ai_provider: AIProvider, max_failures: int = MAX_FAILURE_EXAMPLES):
        self.ai_provider = ai_provider
        self.max_failures = max_failures

    async def improve(
        self,
        base_prompt: str,
        failures: Sequence[PredictionResult],
        history: Sequence[PromptRecord],
    ) -> str:
        if not failures:
            raise ValueError("improve() requires at least one failure")

        improvement_prompt = build_improvement_prompt(
            base_prompt, failures, history, max_failures=self.max_failures
        )
        improved = await self.ai_provider.generate(improvement_prompt)

        # The reply is taken verbatim; only an empty reply is rejected
        if not improved or not improved.strip():
            raise MalformedModelResponse("Improver returned an empty prompt", raw_response=improved or "")

        logger.info("Prompt improved from %d failures", len(failures))
        return improved
