import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from functools import wraps
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Generic
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Sequence
from typing import Tuple
from typing import TypeVar

from rostersync.exceptions import CredentialError

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')
F = TypeVar('F', bound=Callable[..., Any])


def timeit(method: F) -> F:
    """
    Log how long the wrapped call took. Coroutine functions are timed until they are awaited to completion.
    """
    if inspect.iscoroutinefunction(method):
        @wraps(method)
        async def timed_async(*args, **kwargs):  # type: ignore
            start = time.monotonic()
            try:
                return await method(*args, **kwargs)
            finally:
                logger.debug(f"{method.__module__}.{method.__name__} took {time.monotonic() - start:.3f}s")

        return timed_async  # type: ignore

    @wraps(method)
    def timed(*args, **kwargs):  # type: ignore
        start = time.monotonic()
        try:
            return method(*args, **kwargs)
        finally:
            logger.debug(f"{method.__module__}.{method.__name__} took {time.monotonic() - start:.3f}s")

    return timed  # type: ignore


@dataclass
class BatchResult(Generic[T, R]):
    results: List[R] = field(default_factory=list)
    errors: List[Tuple[T, BaseException]] = field(default_factory=list)


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrency: int,
) -> BatchResult[T, R]:
    """
    Run `worker` over every item with at most `max_concurrency` calls in flight.

    A failing item is recorded in `errors` next to the item that caused it and never cancels its
    siblings. `results` is in completion order, so callers must correlate by content, not position.
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")

    semaphore = asyncio.Semaphore(max_concurrency)
    outcome: BatchResult[T, R] = BatchResult()

    async def _run(item: T) -> None:
        async with semaphore:
            try:
                result = await worker(item)
            except Exception as e:
                outcome.errors.append((item, e))
            else:
                outcome.results.append(result)

    await asyncio.gather(*(_run(item) for item in items))
    return outcome


def chunked(items: Sequence[T], chunk_size: int) -> Iterator[List[T]]:
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
    for start in range(0, len(items), chunk_size):
        yield list(items[start:start + chunk_size])


def raise_if_fatal(outcome: BatchResult) -> None:
    """
    Re-raise the first error that must abort the whole run instead of a single item.
    """
    for _, error in outcome.errors:
        if isinstance(error, CredentialError):
            raise error
