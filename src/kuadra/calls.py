"""Execution of blocking SDK calls from async reconcilers.

boto3 and the kubernetes client are synchronous; calls are pushed to the
default executor so the event loop stays responsive while a worker waits
on the network.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar

from .errors import ReconcileCancelledError

T = TypeVar("T")


class CallRunner:
    """Runs one external call at a time, honouring a cancel event.

    The cancel event is checked before every call; once it is set no further
    external call is started and ReconcileCancelledError is raised instead.
    A call already in flight is allowed to finish.
    """

    def __init__(self, cancel_event: asyncio.Event | None = None) -> None:
        self._cancel_event = cancel_event
        self.call_count = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise ReconcileCancelledError("Reconcile cancelled before next external call")

    async def __call__(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        self.check_cancelled()
        self.call_count += 1
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
