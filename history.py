"""
On-disk state for the improvement loop: the bounded prompt/score ledger and
the base prompt file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import List

from pydantic import BaseModel, TypeAdapter, ValidationError

from errors import LedgerIOError, PromptFileError

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


class PromptRecord(BaseModel):
    prompt: str
    score: float


_records_adapter = TypeAdapter(List[PromptRecord])


def atomic_write(path: str, text: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class PromptHistory:
    """Append-only ledger holding the most recent `limit` prompt scores, oldest first."""

    def __init__(self, path: str, limit: int = DEFAULT_HISTORY_LIMIT):
        self.path = path
        self.limit = limit

    def load(self) -> List[PromptRecord]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r") as f:
                return _records_adapter.validate_python(json.load(f))
        except (OSError, ValueError, ValidationError) as exc:
            raise LedgerIOError(f"Failed to read prompt history {self.path}: {exc}") from exc

    def append(self, prompt: str, score: float) -> List[PromptRecord]:
        history = self.load()
        history.append(PromptRecord(prompt=prompt, score=score))
        history = history[-self.limit:]

        payload = json.dumps([r.model_dump() for r in history], indent=2)
        try:
            atomic_write(self.path, payload)
        except OSError as exc:
            raise LedgerIOError(f"Failed to write prompt history {self.path}: {exc}") from exc

        logger.debug("Prompt history now holds %d records", len(history))
        return history


class PromptStore:
    """The plain-text file holding the current base prompt."""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> str:
        try:
            with open(self.path, "r") as f:
                return f.read()
        except OSError as exc:
            raise PromptFileError(f"Failed to read base prompt file {self.path}: {exc}") from exc

    def write(self, text: str) -> None:
        try:
            atomic_write(self.path, text)
        except OSError as exc:
            raise PromptFileError(f"Failed to write base prompt file {self.path}: {exc}") from exc
