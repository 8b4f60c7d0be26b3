"""Concurrent batch execution for fleetsync.

Runs one provider call per resource with bounded concurrency. Results are
keyed by identity key and reassembled in input order, so a pass report
never depends on which provider response arrived first.

Cancellation is cooperative: once the CancelToken is set no new calls are
issued, calls already in flight run to completion, and only the issued
items appear in the results.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Hashable, Sequence, TypeVar

from .retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
K = TypeVar("K", bound=Hashable)


class CancelToken:
    """Pass-level cancellation signal.

    Example:
        >>> token = CancelToken()
        >>> token.cancelled
        False
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Stop issuing new calls in the current pass."""
        if not self._cancelled:
            logger.warning("Cancellation requested; waiting for in-flight calls")
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class BatchExecutor(Generic[T, R]):
    """Runs a per-item coroutine across a batch with bounded concurrency.

    Attributes:
        concurrency: Maximum number of calls in flight
        retry_config: Retry behavior for transient provider errors
        on_retry: Retry notification callback

    Example:
        >>> executor = BatchExecutor(concurrency=5)
        >>> results = await executor.run(
        ...     resources,
        ...     key=lambda r: r.name,
        ...     work=stop_one,
        ...     on_error=lambda r, e: OutcomeRecord.failed(r.name, str(e)),
        ... )
    """

    def __init__(
        self,
        concurrency: int = 10,
        retry_config: RetryConfig | None = None,
        on_retry: Callable[[str, int, int, str, float], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.retry_config = retry_config or RetryConfig()
        self.on_retry = on_retry

    async def run(
        self,
        items: Sequence[T],
        key: Callable[[T], K],
        work: Callable[[T], Awaitable[R]],
        on_error: Callable[[T, Exception], R],
        cancel: CancelToken | None = None,
    ) -> dict[K, R]:
        """Execute ``work`` for each item.

        Args:
            items: Items to process, in report order
            key: Function returning the unique key for an item
            work: Coroutine function performing the call for one item
            on_error: Converts an item's exception into a result
            cancel: Optional pass-level cancellation token

        Returns:
            Dictionary mapping keys to results, in input order, containing
            only the items that were issued before cancellation
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: list[tuple[K, T, asyncio.Task[R]]] = []

        async def guarded(item: T) -> R:
            try:
                return await retry_with_backoff(
                    lambda: work(item),
                    self.retry_config,
                    name=str(key(item)),
                    on_retry=self.on_retry,
                )
            finally:
                semaphore.release()

        for item in items:
            await semaphore.acquire()
            if cancel is not None and cancel.cancelled:
                semaphore.release()
                logger.info(f"Cancelled after issuing {len(tasks)}/{len(items)} call(s)")
                break
            tasks.append((key(item), item, asyncio.create_task(guarded(item))))

        await asyncio.gather(*[task for _, _, task in tasks], return_exceptions=True)

        results: dict[K, R] = {}
        for item_key, item, task in tasks:
            if task.cancelled():
                raise asyncio.CancelledError()
            exc = task.exception()
            if exc is None:
                results[item_key] = task.result()
            elif isinstance(exc, Exception):
                logger.debug(f"Call failed for {item_key}: {exc}")
                results[item_key] = on_error(item, exc)
            else:
                raise exc

        return results
