"""Bounded-concurrency batch driver for reconciliation jobs."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    errors: List[Tuple[Any, Exception]] = field(default_factory=list)
    remaining: int = 0

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def failure_ratio(self) -> float:
        return self.failed / self.processed if self.processed else 0.0


def batch_process(
    items: Sequence[Any],
    processor: Callable[[Any], Optional[bool]],
    batch_size: int = 5,
    time_budget: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> BatchResult:
    """Run ``processor`` over ``items`` at most ``batch_size`` at a time.

    ``processor`` returns True when it acted and False when the item no
    longer qualified. An exception fails only its own item. Once
    ``time_budget`` seconds have passed no new batch is started and the
    rest is reported as ``remaining``.
    """
    batch_size = max(1, int(batch_size))
    result = BatchResult(total=len(items))
    started = clock()

    def _guarded(item: Any) -> Tuple[Any, Optional[bool], Optional[Exception]]:
        try:
            return item, processor(item), None
        except Exception as exc:  # isolate per-item failures
            return item, None, exc

    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for offset in range(0, len(items), batch_size):
            if time_budget is not None and clock() - started >= time_budget:
                result.remaining = len(items) - offset
                logger.warning(
                    "Batch time budget of %ss exhausted, %s item(s) left for the next run",
                    time_budget,
                    result.remaining,
                )
                break
            chunk = items[offset:offset + batch_size]
            for item, acted, exc in executor.map(_guarded, chunk):
                result.processed += 1
                if exc is not None:
                    logger.error("Batch item %s failed: %s", item, exc, exc_info=exc)
                    result.errors.append((item, exc))
                elif acted:
                    result.succeeded += 1
                else:
                    result.skipped += 1
    return result
