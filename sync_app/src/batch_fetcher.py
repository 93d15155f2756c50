"""
BatchFetcher fetches one sub-resource per item in fixed-size batches.

Within a batch every fetch runs concurrently and all of them are awaited,
successes and failures alike. Batches never overlap and a fixed delay
separates consecutive batches, so concurrency equals the batch size and a
sync of n items costs ceil(n / batch_size) round trips.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type

from ..config.settings import settings
from .errors import NotFound


@dataclass
class FetchFailure:
    item_id: Any
    reason: str
    not_found: bool = False
    error: Optional[BaseException] = None


@dataclass
class BatchResult:
    succeeded: Dict[Any, Any] = field(default_factory=dict)
    failed: List[FetchFailure] = field(default_factory=list)
    batches: int = 0
    delays: int = 0

    @property
    def not_found_ids(self) -> List[Any]:
        return [f.item_id for f in self.failed if f.not_found]

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "not_found": len(self.not_found_ids),
            "batches": self.batches,
            "delays": self.delays,
        }


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchFetcher:
    """Bounded-concurrency, delayed-batch fetcher.

    Args:
        batch_size: fetches issued together; defaults to ``settings.batch_size``.
        delay_seconds: pause between batches; defaults to ``settings.batch_delay_seconds``.
        sleep: coroutine used for the pause (tests inject a recorder).
    """

    def __init__(
        self,
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.batch_size = batch_size or settings.batch_size
        self.delay_seconds = settings.batch_delay_seconds if delay_seconds is None else delay_seconds
        self._sleep = sleep or asyncio.sleep
        if self.batch_size < 1:
            raise ValueError("batch size must be >= 1")

    async def _call(self, fetch: Callable[[Any], Any], item_id: Any) -> Any:
        if inspect.iscoroutinefunction(fetch):
            return await fetch(item_id)
        # blocking fetches (requests) run in worker threads
        return await asyncio.to_thread(fetch, item_id)

    async def run(
        self,
        item_ids: Sequence[Any],
        fetch: Callable[[Any], Any],
        fatal: Tuple[Type[BaseException], ...] = (),
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> BatchResult:
        """Fetch every item; failures are collected, never raised.

        Exceptions of a ``fatal`` type stop the run once the batch they
        occurred in has settled, and the first one is re-raised.
        """
        items = list(item_ids)
        result = BatchResult()
        batches = chunked(items, self.batch_size)
        done = 0

        for index, batch in enumerate(batches):
            result.batches += 1
            outcomes = await asyncio.gather(
                *(self._call(fetch, item_id) for item_id in batch),
                return_exceptions=True,
            )
            fatal_error: Optional[BaseException] = None
            for item_id, outcome in zip(batch, outcomes):
                done += 1
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        # KeyboardInterrupt / SystemExit / CancelledError
                        raise outcome
                    failure = FetchFailure(
                        item_id=item_id,
                        reason=str(outcome) or outcome.__class__.__name__,
                        not_found=isinstance(outcome, NotFound),
                        error=outcome,
                    )
                    result.failed.append(failure)
                    if fatal and isinstance(outcome, fatal) and fatal_error is None:
                        fatal_error = outcome
                    level = logging.INFO if failure.not_found else logging.WARNING
                    self.logger.log(level, f"⚠️ Fetch failed for {item_id}: {failure.reason}")
                else:
                    result.succeeded[item_id] = outcome
                if on_progress:
                    on_progress({
                        "current": done,
                        "total": len(items),
                        "item_id": item_id,
                        "success": not isinstance(outcome, BaseException),
                    })

            if fatal_error is not None:
                raise fatal_error

            if index < len(batches) - 1:
                result.delays += 1
                await self._sleep(self.delay_seconds)

        self.logger.info(
            f"📦 Batch fetch done: {len(result.succeeded)} ok, {len(result.failed)} failed "
            f"({result.batches} batches)"
        )
        return result

    def run_blocking(
        self,
        item_ids: Sequence[Any],
        fetch: Callable[[Any], Any],
        fatal: Tuple[Type[BaseException], ...] = (),
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> BatchResult:
        """Synchronous entry point for callers outside an event loop."""
        return asyncio.run(self.run(item_ids, fetch, fatal=fatal, on_progress=on_progress))
