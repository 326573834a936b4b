"""
Runtime configuration.

Values come from the environment (a local .env is loaded by the entry points).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from ai_providers import DEFAULT_TIMEOUT
from evaluation import MalformedResponsePolicy
from labeler import LONG_THRESHOLD, SHORT_THRESHOLD, TIE_BREAK, Action
from window_builder import LOOKBACK_HOURS

DEFAULT_EVAL_MODELS = {"openai": "o1-mini", "anthropic": "claude-sonnet-4-5"}
DEFAULT_IMPROVER_MODELS = {"openai": "o1", "anthropic": "claude-opus-4-1"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"true", "1", "yes", "y"}:
        return True
    if value in {"false", "0", "no", "n"}:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    ai_provider: str = "openai"
    api_key: Optional[str] = None
    eval_model: str = DEFAULT_EVAL_MODELS["openai"]
    improver_model: str = DEFAULT_IMPROVER_MODELS["openai"]
    model_timeout: float = DEFAULT_TIMEOUT

    long_threshold: float = LONG_THRESHOLD
    short_threshold: float = SHORT_THRESHOLD
    tie_break: Action = TIE_BREAK
    lookback: int = LOOKBACK_HOURS
    max_concurrency: int = 20
    malformed_policy: MalformedResponsePolicy = MalformedResponsePolicy.ABORT

    accuracy_threshold: float = 0.7
    max_iterations: int = 10
    history_limit: int = 10
    improve_after_convergence: bool = True

    cache_dir: str = "cache"
    prompt_file: str = "prompt.txt"
    history_file: str = os.path.join("cache", "prompt_history.json")
    data_end_offset_hours: int = 48
    data_span_hours: int = 96

    log_level: str = "INFO"

    def __post_init__(self):
        if self.ai_provider not in DEFAULT_EVAL_MODELS:
            raise ValueError(
                f"Invalid AI_PROVIDER: {self.ai_provider}. Must be 'openai' or 'anthropic'"
            )
        if self.tie_break not in (Action.LONG, Action.SHORT):
            raise ValueError("TIE_BREAK must be 'long' or 'short'")
        if not 0.0 <= self.accuracy_threshold <= 1.0:
            raise ValueError("ACCURACY_THRESHOLD must be between 0 and 1")
        if self.max_iterations < 1:
            raise ValueError("MAX_ITERATIONS must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("MAX_CONCURRENCY must be at least 1")
        if self.lookback < 1:
            raise ValueError("LOOKBACK_HOURS must be at least 1")
        if self.history_limit < 1:
            raise ValueError("HISTORY_LIMIT must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.getenv("AI_PROVIDER", "openai").strip().lower()
        if provider == "anthropic":
            api_key = os.getenv("ANTHROPIC_API_KEY")
        else:
            api_key = os.getenv("OPENAI_API_KEY")

        tie_break = os.getenv("TIE_BREAK", TIE_BREAK.value).strip().lower()
        try:
            tie_break_action = Action(tie_break)
        except ValueError:
            raise ValueError(f"TIE_BREAK must be 'long' or 'short', got {tie_break!r}") from None

        policy = os.getenv("MALFORMED_RESPONSE_POLICY", MalformedResponsePolicy.ABORT.value)
        try:
            malformed_policy = MalformedResponsePolicy(policy.strip().lower())
        except ValueError:
            raise ValueError(
                f"MALFORMED_RESPONSE_POLICY must be 'abort' or 'count_as_failure', got {policy!r}"
            ) from None

        cache_dir = os.getenv("CACHE_DIR", "cache")

        return cls(
            ai_provider=provider,
            api_key=api_key,
            eval_model=os.getenv("EVAL_MODEL") or DEFAULT_EVAL_MODELS.get(provider, "o1-mini"),
            improver_model=os.getenv("IMPROVER_MODEL") or DEFAULT_IMPROVER_MODELS.get(provider, "o1"),
            model_timeout=_env_float("MODEL_TIMEOUT_SECONDS", DEFAULT_TIMEOUT),
            long_threshold=_env_float("LONG_THRESHOLD", LONG_THRESHOLD),
            short_threshold=_env_float("SHORT_THRESHOLD", SHORT_THRESHOLD),
            tie_break=tie_break_action,
            lookback=_env_int("LOOKBACK_HOURS", LOOKBACK_HOURS),
            max_concurrency=_env_int("MAX_CONCURRENCY", 20),
            malformed_policy=malformed_policy,
            accuracy_threshold=_env_float("ACCURACY_THRESHOLD", 0.7),
            max_iterations=_env_int("MAX_ITERATIONS", 10),
            history_limit=_env_int("HISTORY_LIMIT", 10),
            improve_after_convergence=_env_bool("IMPROVE_AFTER_CONVERGENCE", True),
            cache_dir=cache_dir,
            prompt_file=os.getenv("PROMPT_FILE", "prompt.txt"),
            history_file=os.getenv("HISTORY_FILE", os.path.join(cache_dir, "prompt_history.json")),
            data_end_offset_hours=_env_int("DATA_END_OFFSET_HOURS", 48),
            data_span_hours=_env_int("DATA_SPAN_HOURS", 96),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            env_name = "ANTHROPIC_API_KEY" if self.ai_provider == "anthropic" else "OPENAI_API_KEY"
            raise ValueError(f"Missing {env_name} environment variable")
        return self.api_key
