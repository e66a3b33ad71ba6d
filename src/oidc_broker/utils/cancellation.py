"""Cooperative cancellation helpers.

Every suspension point of an authentication attempt (network call, poll
wait) goes through these helpers with the session's cancel event, so a
CancelIsAuthenticated call is observed at the next await.
"""

from __future__ import annotations

__all__ = [
    "check_cancelled",
    "run_cancellable",
    "sleep_cancellable",
]

import asyncio
from typing import Awaitable, TypeVar

from oidc_broker.exceptions import AuthCancelledError

T = TypeVar("T")


def check_cancelled(cancel: asyncio.Event | None) -> None:
    """Raise AuthCancelledError if the cancel event is set."""
    if cancel is not None and cancel.is_set():
        raise AuthCancelledError()


async def run_cancellable(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await an operation, abandoning it as soon as cancel is set.

    Args:
        awaitable: The operation (typically an HTTP request).
        cancel: Event signalling cancellation. None means not cancellable.

    Returns:
        The operation's result.

    Raises:
        AuthCancelledError: If cancel was set before or during the operation.
    """
    if cancel is not None and cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AuthCancelledError()
    if cancel is None:
        return await awaitable

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.wait({work})
            if not work.cancelled():
                # Abandoned operation; mark its exception as retrieved
                work.exception()

    if work.cancelled():
        raise AuthCancelledError()
    result = work.result()
    check_cancelled(cancel)
    return result


async def sleep_cancellable(seconds: float, cancel: asyncio.Event | None) -> None:
    """Sleep for the given time, waking early if cancel is set.

    Raises:
        AuthCancelledError: If cancel is set before or during the sleep.
    """
    check_cancelled(cancel)
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise AuthCancelledError()
