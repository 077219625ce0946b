"""
Async fan-out helpers.

Every place that runs independent marketplace work side by side (per-listing
delisting, per-job batches, per-user polling) joins through gather_settled so
one failure never cancels or hides the others.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Settled(Generic[T]):
    """Outcome of one task: either a value or the exception it raised."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(*aws: Awaitable[T]) -> List[Settled[T]]:
    """Run awaitables concurrently and collect every outcome, in input order."""
    if not aws:
        return []
    results = await asyncio.gather(*aws, return_exceptions=True)
    settled: List[Settled[T]] = []
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            settled.append(Settled(error=result))
        else:
            settled.append(Settled(value=result))
    return settled


def chunked(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_seconds: float = 0.0,
) -> List[Settled[R]]:
    """
    Process items in concurrent batches of batch_size, pausing delay_seconds
    between batches. Returns one Settled per item, in input order.
    """
    outcomes: List[Settled[R]] = []
    batches = list(chunked(items, batch_size))
    for index, batch in enumerate(batches):
        outcomes.extend(await gather_settled(*(worker(item) for item in batch)))
        if delay_seconds > 0 and index < len(batches) - 1:
            await asyncio.sleep(delay_seconds)
    return outcomes


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    description: Optional[str] = None,
) -> T:
    """
    Await fn() up to max_attempts times with exponential backoff between attempts.

    Args:
        fn: Zero-argument coroutine factory
        max_attempts: Total attempts including the first one
        initial_delay: Delay before the second attempt, in seconds
        multiplier: Growth factor applied after each failed attempt
        max_delay: Upper bound for a single delay, in seconds
        description: Label used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The exception of the last attempt if every attempt fails
    """
    delay = initial_delay
    label = description or getattr(fn, "__name__", "operation")
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= max_attempts:
                logger.warning(f"{label} failed after {attempt} attempts: {e}")
                raise
            wait = min(delay, max_delay)
            logger.info(f"{label} attempt {attempt}/{max_attempts} failed ({e}), retrying in {wait:.2f}s")
            if wait > 0:
                await asyncio.sleep(wait)
            delay = delay * multiplier
    raise RuntimeError("retry_with_backoff called with max_attempts < 1")
