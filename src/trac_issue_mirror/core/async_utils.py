"""Async utilities for bridging blocking XML-RPC calls into the sync engine."""

import asyncio
import logging
from contextvars import ContextVar
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized at startup
_semaphore: asyncio.Semaphore | None = None

# Set by gather_until_failure for the tasks it spawns
_abort_event: ContextVar[asyncio.Event | None] = ContextVar(
    "trac_abort_event", default=None
)


class RequestAborted(Exception):
    """A queued request was dropped because a sibling request failed."""


def init_semaphore(max_parallel: int = 2) -> None:
    """Initialize the concurrency semaphore. Call once at startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "Trac request semaphore initialized: max_parallel=%d",
        max_parallel,
    )


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Does NOT acquire the semaphore; meant for local file and git work.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


def sibling_failed() -> bool:
    """True inside ``gather_until_failure`` once any sibling coroutine has failed."""
    event = _abort_event.get()
    return event is not None and event.is_set()


def _check_abort() -> None:
    if sibling_failed():
        raise RequestAborted("sibling request failed")


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool, bounded by the semaphore.

    Falls back to unbounded if the semaphore is not initialized. When called
    from inside ``gather_until_failure`` and a sibling has already failed,
    the request is never sent and ``RequestAborted`` is raised instead.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    if _semaphore is None:
        _check_abort()
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        _check_abort()
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_until_failure(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T | BaseException]:
    """Run coroutines concurrently, stopping new requests after the first failure.

    Requests already sent are allowed to finish so their results are not
    lost; requests still waiting for the semaphore end with
    ``RequestAborted``. Nothing is raised here: each slot of the returned
    list holds either the result or the exception of the coroutine at the
    same position.

    Args:
        coros: Sequence of coroutines to run concurrently. They should use
            run_sync_limited for their remote calls.

    Returns:
        Results or exceptions in the same order as the input coroutines.
    """
    if not coros:
        return []

    abort = asyncio.Event()

    async def _guard(coro: Coroutine[Any, Any, T]) -> T:
        try:
            return await coro
        except RequestAborted:
            raise
        except Exception:
            abort.set()
            raise

    token = _abort_event.set(abort)
    try:
        # tasks copy the current context, abort event included
        tasks = [asyncio.ensure_future(_guard(c)) for c in coros]
    finally:
        _abort_event.reset(token)

    return list(await asyncio.gather(*tasks, return_exceptions=True))


def first_failure(results: Sequence[Any]) -> BaseException | None:
    """Return the first real failure in a ``gather_until_failure`` result list."""
    for result in results:
        if isinstance(result, BaseException) and not isinstance(
            result, RequestAborted
        ):
            return result
    return None
