"""Concurrency support for madepush.

Provides the windowed batch engine used to push issues (concurrent attempt per
window, sequential fallback, pacing between windows) and a helper for running
blocking HTTP calls off the event loop.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .logging import StructuredLogger, get_logger

T = TypeVar('T')
R = TypeVar('R')

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY = 1.0
DEFAULT_INDIVIDUAL_DELAY = 0.5


@dataclass
class BatchConfig:
    """Window size and pacing delays (seconds) for the batch engine."""

    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY
    individual_delay: float = DEFAULT_INDIVIDUAL_DELAY

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")


@dataclass
class BatchOutcome(Generic[T, R]):
    """Per-item outcome of one batch run, keyed by the item's input position."""

    results: dict[int, R]
    failures: dict[int, BaseException]
    total: int

    def ordered_results(self) -> list[R]:
        return [self.results[i] for i in sorted(self.results)]


async def run_blocking(func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
    """Run a blocking callable in the loop's default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class BatchProcessor:
    """Push items window by window.

    Each window is attempted concurrently. When any item of the window fails,
    the window is re-processed sequentially: items that already succeeded in
    the concurrent attempt keep their result, the others are pushed one at a
    time with ``individual_delay`` after each attempt. ``batch_delay`` is
    awaited between windows, never after the last one.
    """

    def __init__(self, config: BatchConfig | None = None, logger: StructuredLogger | None = None):
        self.config = config or BatchConfig()
        self.logger = logger or get_logger()
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def process(
        self,
        items: Sequence[T],
        push: Callable[[T], Awaitable[R]],
        *,
        describe: Callable[[T], str] = str,
    ) -> BatchOutcome[T, R]:
        results: dict[int, R] = {}
        failures: dict[int, BaseException] = {}
        size = self.config.batch_size
        start_time = time.perf_counter()

        for start in range(0, len(items), size):
            window = list(enumerate(items[start : start + size], start=start))
            window_no = start // size + 1
            attempt = await asyncio.gather(
                *(push(item) for _, item in window), return_exceptions=True
            )
            errors = [r for r in attempt if isinstance(r, BaseException)]
            if not errors:
                for (index, _), result in zip(window, attempt):
                    results[index] = result  # type: ignore[assignment]
            else:
                self.logger.log_error(
                    f"❌ Error in batch {window_no}", error=str(errors[0]), failed=len(errors)
                )
                self.logger.info("🔄 Retrying batch issues individually...", batch=window_no)
                for (index, item), first in zip(window, attempt):
                    if not isinstance(first, BaseException):
                        results[index] = first
                        continue
                    try:
                        results[index] = await push(item)
                    except Exception as exc:
                        failures[index] = exc
                        self.logger.log_error(
                            f"❌ Failed to process individual issue {describe(item)}",
                            error=str(exc),
                        )
                    await self._sleep(self.config.individual_delay)

            if start + size < len(items):
                self.logger.info(
                    f"⏳ Waiting {self.config.batch_delay * 1000:.0f}ms before next batch..."
                )
                await self._sleep(self.config.batch_delay)

        self.logger.info(
            f"✅ Processing finished: {len(results)}/{len(items)} issues processed successfully",
            succeeded=len(results),
            total=len(items),
        )
        self.logger.log_performance(
            "batch_processing",
            (time.perf_counter() - start_time) * 1000,
            item_count=len(items),
            results_count=len(results),
        )
        return BatchOutcome(results=results, failures=failures, total=len(items))


__all__ = [
    "BatchConfig",
    "BatchOutcome",
    "BatchProcessor",
    "DEFAULT_BATCH_DELAY",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_INDIVIDUAL_DELAY",
    "run_blocking",
]
