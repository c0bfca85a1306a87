"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter and simple classification of transient
GitHub API failure modes (rate limit / abuse / secondary rate limits, gateway
errors and dropped connections).

Environment overrides:
  MADEPUSH_RETRY_ATTEMPTS (default 3)
  MADEPUSH_RETRY_BASE (seconds base, default 0.5)
  MADEPUSH_RETRY_MAX_SLEEP (cap in seconds, unset = no cap)

The caller supplies a thunk returning the desired result or raising. Errors
carrying an HTTP ``status`` (see ``GitHubAPIError``) are retried only when the
status or body marks them transient; ``requests`` connection errors and
timeouts are retried too. For non-idempotent writes (``idempotent=False``)
only refusals are retried (429 and rate-limited 403): a gateway error or a
dropped connection may hide a write GitHub already applied. Everything else
propagates immediately.
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests

from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})
HTTP_TOO_MANY_REQUESTS = 429
HTTP_FORBIDDEN = 403

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
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
        default_factory=lambda: int(os.environ.get("MADEPUSH_RETRY_ATTEMPTS", "3"))
    )
    base_sleep: float = field(
        default_factory=lambda: float(os.environ.get("MADEPUSH_RETRY_BASE", "0.5"))
    )


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def is_transient_error(exc: BaseException, *, idempotent: bool = True) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return idempotent
    status = getattr(exc, "status", None)
    if status is None:
        return False
    text = getattr(exc, "response_text", None) or str(exc)
    if status == HTTP_TOO_MANY_REQUESTS:
        return True
    if status in TRANSIENT_STATUSES:
        return idempotent
    return status == HTTP_FORBIDDEN and is_transient(text)


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: BaseException) -> float:
    retry_after = getattr(exc, "retry_after", None)
    explicit = (
        float(retry_after)
        if retry_after
        else _extract_explicit_backoff(getattr(exc, "response_text", None) or str(exc))
    )
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("MADEPUSH_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:  # pragma: no cover
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T], *, cfg: RetryConfig | None = None, idempotent: bool = True
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):  # noqa: PLR2004
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or not is_transient_error(exc, idempotent=idempotent):
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            get_logger().warning(
                f"⏳ transient GitHub error, attempt {attempt}/{attempts}, "
                f"sleeping {sleep_for:.2f}s",
                error=str(exc),
            )
            time.sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "is_transient", "is_transient_error", "run_with_retries"]
