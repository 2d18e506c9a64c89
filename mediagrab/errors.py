"""Failure taxonomy for download orchestration.

Only the executor raises; everything else reports failures as values on a
``DownloadOutcome``.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Pattern, Tuple


class ErrorReason(str, Enum):
    CLASSIFICATION_UNSUPPORTED = "classification_unsupported"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_FAILED = "execution_failed"
    VERIFICATION_FAILED = "verification_failed"
    PIPELINE_STAGE_FAILED = "pipeline_stage_failed"
    EXHAUSTED_FAILED = "exhausted_failed"


class FailureHint(str, Enum):
    """Best-effort reading of the extractor's error text."""

    ANTI_BOT = "anti_bot"
    PRIVATE = "private"
    REGION_LOCKED = "region_locked"
    BLOCKED = "blocked"
    UNAVAILABLE = "unavailable"
    TOO_LARGE = "too_large"
    UNSUPPORTED_URL = "unsupported_url"


class ExecutionError(Exception):
    """An external invocation exited non-zero or could not be spawned."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.output = output


class ExecutionTimeout(ExecutionError):
    """An external invocation ran past its wall-clock budget."""


# Order matters: "Sign in to confirm you're not a bot" must read as anti-bot, not private.
_HINT_PATTERNS: Tuple[Tuple[FailureHint, Pattern[str]], ...] = (
    (FailureHint.UNSUPPORTED_URL, re.compile(r"unsupported url", re.IGNORECASE)),
    (FailureHint.TOO_LARGE, re.compile(r"larger than max-filesize|file is larger than", re.IGNORECASE)),
    (
        FailureHint.ANTI_BOT,
        re.compile(r"not a bot|captcha|too many requests|http error 429|rate.?limit", re.IGNORECASE),
    ),
    (
        FailureHint.REGION_LOCKED,
        re.compile(r"not available in your country|geo.?restrict|blocked it in your country", re.IGNORECASE),
    ),
    (
        FailureHint.PRIVATE,
        re.compile(r"private (video|account|post)|video is private|login required|log in|sign in|members.only", re.IGNORECASE),
    ),
    (FailureHint.BLOCKED, re.compile(r"http error 403|forbidden|blocked", re.IGNORECASE)),
    (
        FailureHint.UNAVAILABLE,
        re.compile(r"video unavailable|not available|has been removed|does not exist|http error 404", re.IGNORECASE),
    ),
)


def hint_from_output(text: Optional[str]) -> Optional[FailureHint]:
    """Guess why the extractor failed from its output. Heuristic; never raises."""
    if not text:
        return None
    for hint, pattern in _HINT_PATTERNS:
        if pattern.search(text):
            return hint
    return None
