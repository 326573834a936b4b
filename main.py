#!/usr/bin/env python3
"""
Backtest the ETH prediction prompt and improve it until it converges.

Usage:
    python main.py run [--threshold 0.7] [--max-iterations 10]
    python main.py pass [--no-improve]
    python main.py history
    python main.py init-prompt [--force]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from dotenv import load_dotenv

from backtest_prompts import DEFAULT_BASE_PROMPT
from convergence import ConvergenceDriver
from errors import BacktestError
from history import PromptHistory, PromptStore
from settings import Settings

logger = logging.getLogger("prompt_backtest")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Backtest and improve until convergence")
    run_parser.add_argument("--threshold", type=float, default=None, help="Accuracy to stop at (0-1)")
    run_parser.add_argument("--max-iterations", type=int, default=None, help="Iteration cap")

    pass_parser = subparsers.add_parser("pass", help="Run a single backtest pass")
    pass_parser.add_argument("--no-improve", action="store_true", help="Score only, never rewrite the prompt")

    subparsers.add_parser("history", help="Show the prompt score ledger")

    init_parser = subparsers.add_parser("init-prompt", help="Write the default base prompt")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing prompt file")

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(["run"] + list(argv or []))
    return args


async def _run(settings: Settings, args: argparse.Namespace) -> None:
    overrides = {}
    if args.threshold is not None:
        overrides["accuracy_threshold"] = args.threshold
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations
    settings = replace(settings, **overrides)

    driver = ConvergenceDriver.from_settings(settings)
    logger.info("Starting backtest and improvement process...")
    report = await driver.run()
    logger.info(
        "Finished: %s after %d iteration(s), best accuracy %.2f%%",
        report.outcome.value, report.iterations, report.best_accuracy * 100.0,
    )


async def _single_pass(settings: Settings, args: argparse.Namespace) -> None:
    driver = ConvergenceDriver.from_settings(settings)
    base_prompt = driver.prompt_store.read()
    market_data = await driver.load_market_data()
    report = await driver.run_pass(base_prompt, market_data, improve=False if args.no_improve else None)
    print(f"Accuracy: {report.accuracy * 100.0:.2f}% over {report.total} windows")
    print(f"Failures: {len(report.failures)}")
    if report.improved_prompt is not None:
        print(f"Improved prompt written to {settings.prompt_file}")


def _show_history(settings: Settings) -> None:
    records = PromptHistory(settings.history_file, limit=settings.history_limit).load()
    if not records:
        print("No prompt history yet.")
        return
    for i, record in enumerate(records, start=1):
        snippet = record.prompt.replace("\n", " ")[:70]
        print(f"{i:>2}. {record.score * 100.0:6.2f}%  {snippet}")


def _init_prompt(settings: Settings, force: bool) -> None:
    store = PromptStore(settings.prompt_file)
    if store.exists() and not force:
        print(f"{settings.prompt_file} already exists (use --force to overwrite)")
        return
    store.write(DEFAULT_BASE_PROMPT)
    print(f"Default prompt written to {settings.prompt_file}")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as e:
        setup_logging("INFO")
        logger.error("Invalid configuration: %s", e)
        return 2
    setup_logging(settings.log_level)

    try:
        if args.command == "history":
            _show_history(settings)
        elif args.command == "init-prompt":
            _init_prompt(settings, args.force)
        elif args.command == "pass":
            asyncio.run(_single_pass(settings, args))
        else:
            asyncio.run(_run(settings, args))
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except BacktestError as e:
        logger.error("Backtest and improvement failed: %s", e, exc_info=logger.isEnabledFor(logging.DEBUG))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
