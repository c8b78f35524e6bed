"""Race independent strategies to the first success."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Sequence, Set, TypeVar

from bookresolver.errors import CacheWriteFailure, ResolutionFailed
from bookresolver.request_log import RequestLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Detached tasks, referenced until they finish so they are not collected mid-flight.
_background: Set[asyncio.Task] = set()


@dataclass
class Strategy(Generic[T]):
    """One way of producing the value, e.g. a cache read or a catalog call."""
    name: str
    run: Callable[[], Awaitable[T]]


def _detach(task: asyncio.Task):
    _background.add(task)
    task.add_done_callback(_consume)


def _consume(task: asyncio.Task):
    _background.discard(task)
    if not task.cancelled():
        # Retrieve the exception so abandoned failures are not reported as unhandled
        task.exception()


async def first_success(
    strategies: Sequence[Strategy[T]],
    label: str,
    log: Optional[RequestLog] = None,
) -> T:
    """
    Start every strategy at once and return the first one to succeed.

    Strategies still running when a winner is found are abandoned, not
    cancelled: whatever they eventually return is discarded.

    Args:
        strategies: Strategies to race
        label: Human-readable identifier, used in the aggregate error
        log: Request log

    Returns:
        Value of the first successful strategy

    Raises:
        ResolutionFailed: every strategy failed
    """
    if not strategies:
        raise ResolutionFailed(label, [])

    tasks: Dict[asyncio.Task, Strategy] = {
        asyncio.ensure_future(strategy.run()): strategy for strategy in strategies
    }
    errors: Dict[asyncio.Task, BaseException] = {}
    pending = set(tasks)

    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in [t for t in tasks if t in done]:
                if task.cancelled():
                    errors[task] = asyncio.CancelledError(f"{tasks[task].name} cancelled")
                    continue
                error = task.exception()
                if error is None:
                    logger.debug(f"{tasks[task].name} won the race for {label}")
                    return task.result()
                errors[task] = error
                message = f"{tasks[task].name} failed for {label}: {error}"
                if log:
                    log.log(message)
                else:
                    logger.info(message)
    finally:
        for task in pending:
            _detach(task)

    raise ResolutionFailed(label, [errors[t] for t in tasks if t in errors])


def fire_and_forget(coro: Awaitable[Any], log: Optional[RequestLog] = None, what: str = "write to cache") -> asyncio.Task:
    """
    Schedule a best-effort side effect without waiting for it.

    A failure is logged as a cache write failure and never propagates.
    """
    task = asyncio.ensure_future(coro)
    _background.add(task)

    def _report(done: asyncio.Task):
        _background.discard(done)
        if done.cancelled():
            return
        error = done.exception()
        if error is not None:
            failure = CacheWriteFailure(f"Failed to {what}: {error}")
            if log:
                log.error(failure.message)
            else:
                logger.error(failure.message)

    task.add_done_callback(_report)
    return task
