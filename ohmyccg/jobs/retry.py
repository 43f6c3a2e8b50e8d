"""Failure classification and backoff for model CLI runs."""

import random
import re
from enum import Enum


class FailureKind(str, Enum):
    """How a failed CLI run should be handled."""
    RATE_LIMIT = "rate_limit"  # Retry with backoff
    MODEL_NOT_FOUND = "model_not_found"  # Walk the fallback chain, or surface
    FATAL = "fatal"  # Surface immediately


RATE_LIMIT_PATTERN = re.compile(
    r"429|rate.?limit|too many requests|quota.?exceeded|resource.?exhausted|overloaded|capacity",
    re.IGNORECASE,
)
MODEL_NOT_FOUND_PATTERN = re.compile(
    r"model_not_found|model is not supported|not found",
    re.IGNORECASE,
)

# Longest slice of CLI output carried into an error message
ERROR_TAIL_CHARS = 1000


def is_rate_limited(text: str) -> bool:
    return bool(RATE_LIMIT_PATTERN.search(text))


def is_model_not_found(text: str) -> bool:
    return bool(MODEL_NOT_FOUND_PATTERN.search(text))


def classify_failure(output: str) -> FailureKind:
    """Classify the combined output of a failed run.

    Model-not-found is checked first: a missing model never recovers by
    waiting.
    """
    if is_model_not_found(output):
        return FailureKind.MODEL_NOT_FOUND
    if is_rate_limited(output):
        return FailureKind.RATE_LIMIT
    return FailureKind.FATAL


def retry_delay(attempt: int, initial_ms: int, max_ms: int) -> float:
    """Backoff before retry ``attempt`` (0-based), in seconds.

    ``min(initial * 2**attempt, max)`` scaled by a uniform jitter in [0.5, 1.0].
    """
    base = min(initial_ms * (2 ** attempt), max_ms)
    return base * random.uniform(0.5, 1.0) / 1000


def error_tail(text: str, limit: int = ERROR_TAIL_CHARS) -> str:
    """Last ``limit`` characters of ``text``, stripped."""
    text = text.strip()
    return text[-limit:] if len(text) > limit else text
