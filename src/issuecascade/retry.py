"""Centralized retry / backoff helpers.

``run_with_retries`` wraps a thunk with exponential backoff plus jitter and
retries only failures that ``classify_error`` tags as GitHub rate limiting
(primary, secondary, or abuse detection). Anything else propagates at once.

Environment overrides:
  ISSUECASCADE_RETRY_ATTEMPTS (default 3)
  ISSUECASCADE_RETRY_BASE (seconds base, default 1.0)
  ISSUECASCADE_RETRY_MAX_SLEEP (cap on a single sleep, unset = no cap)
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import classify_error
from .logging import get_logger

T = TypeVar("T")

RATE_LIMIT_CATEGORIES = frozenset({"github.rate_limit", "github.abuse"})

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(
        default_factory=lambda: int(os.environ.get("ISSUECASCADE_RETRY_ATTEMPTS", "3"))
    )
    base_sleep: float = field(
        default_factory=lambda: float(os.environ.get("ISSUECASCADE_RETRY_BASE", "1.0"))
    )


def is_rate_limited(exc: BaseException) -> bool:
    return classify_error(exc).category in RATE_LIMIT_CATEGORIES


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: BaseException) -> float:
    retry_after = getattr(exc, "retry_after", None)
    explicit = retry_after if isinstance(retry_after, (int, float)) and retry_after > 0 else None
    if explicit is None:
        explicit = _extract_explicit_backoff(str(exc))
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = float(explicit) if explicit is not None else backoff
    max_cap_env = os.environ.get("ISSUECASCADE_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or not is_rate_limited(exc):
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            get_logger().warning(
                f"rate limited, retrying in {sleep_for:.2f}s (attempt {attempt}/{attempts})",
                attempt=attempt,
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "is_rate_limited", "run_with_retries"]
