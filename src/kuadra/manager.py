"""Watch-driven dispatcher for the AwsAccount and User reconcilers.

Work items are ``(kind, key)`` pairs. The queue guarantees:
- an item waiting in the queue is queued once, however often it is enqueued
- an item being processed is never handed to a second worker
- an item enqueued while it is being processed runs again afterwards

Watch streams are blocking and run on a dedicated thread pool; they hand
events back to the event loop with ``call_soon_threadsafe``. A periodic
resync re-lists every record so missed events are eventually repaired.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

from .config import DEFAULT_RESYNC_INTERVAL_SECONDS, DEFAULT_WORKERS
from .interfaces import ObjectStore
from .models import KIND_AWS_ACCOUNT, KIND_USER, PLURAL_AWS_ACCOUNT, PLURAL_USER, ObjectKey
from .projector import UserReconciler
from .reconciler import AccountReconciler

logger = logging.getLogger(__name__)

WorkItem = tuple[str, ObjectKey]

# How long an idle worker waits before re-checking for shutdown
WORKER_POLL_SECONDS = 1.0

# Delay before re-opening a watch that failed
WATCH_RETRY_SECONDS = 5.0

WATCHED_KINDS = ((KIND_AWS_ACCOUNT, PLURAL_AWS_ACCOUNT), (KIND_USER, PLURAL_USER))

EVENT_DELETED = "DELETED"


class Watcher(Protocol):
    def stream(self, plural: str, namespace: str | None = None) -> Any: ...

    def stop(self) -> None: ...


class WorkQueue:
    """De-duplicating work queue with in-flight tracking.

    Not thread-safe; call from the event loop only.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        self._queued: set[WorkItem] = set()
        self._in_flight: set[WorkItem] = set()
        self._dirty: set[WorkItem] = set()
        self._timers: dict[WorkItem, asyncio.TimerHandle] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def in_flight(self) -> frozenset[WorkItem]:
        return frozenset(self._in_flight)

    def enqueue(self, kind: str, key: ObjectKey) -> None:
        if self._closed:
            return
        item = (kind, key)
        if item in self._in_flight:
            self._dirty.add(item)
            return
        if item in self._queued:
            return
        self._queued.add(item)
        self._queue.put_nowait(item)

    def enqueue_after(self, kind: str, key: ObjectKey, delay_seconds: float) -> None:
        """Enqueue ``(kind, key)`` once ``delay_seconds`` have passed.

        If a timer for the item is already pending, the earlier one wins.
        """
        if self._closed:
            return
        item = (kind, key)
        loop = asyncio.get_running_loop()
        existing = self._timers.get(item)
        if existing is not None:
            if existing.when() <= loop.time() + delay_seconds:
                return
            existing.cancel()
        self._timers[item] = loop.call_later(delay_seconds, self._fire, item)

    def _fire(self, item: WorkItem) -> None:
        self._timers.pop(item, None)
        self.enqueue(*item)

    async def get(self) -> WorkItem:
        item = await self._queue.get()
        self._queued.discard(item)
        self._in_flight.add(item)
        return item

    def done(self, item: WorkItem) -> None:
        self._in_flight.discard(item)
        self._queue.task_done()
        if item in self._dirty:
            self._dirty.discard(item)
            self.enqueue(*item)

    def close(self) -> None:
        """Stop accepting work and cancel pending delayed items."""
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


class Manager:
    """Runs the reconcilers against a stream of change notifications."""

    def __init__(
        self,
        store: ObjectStore,
        account_reconciler: AccountReconciler,
        user_reconciler: UserReconciler,
        watcher_factory: Callable[[], Watcher],
        *,
        namespace: str | None = None,
        workers: int = DEFAULT_WORKERS,
        resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._account_reconciler = account_reconciler
        self._user_reconciler = user_reconciler
        self._watcher_factory = watcher_factory
        self._namespace = namespace or None
        self._workers = workers
        self._resync_interval_seconds = resync_interval_seconds
        self._queue = WorkQueue()
        self._shutdown_event = asyncio.Event()
        self._watchers: list[Watcher] = []

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    async def process(self, item: WorkItem) -> Any:
        """Run the reconciler for one work item and schedule any retry."""
        kind, key = item
        if kind == KIND_AWS_ACCOUNT:
            result = await self._account_reconciler.reconcile(key, self._shutdown_event)
        elif kind == KIND_USER:
            result = await self._user_reconciler.reconcile(key, self._shutdown_event)
        else:
            logger.error("Unknown work item kind", extra={"kind": kind, "key": str(key)})
            return None

        if result.requeue_after_seconds and not self._shutdown_event.is_set():
            self._queue.enqueue_after(kind, key, result.requeue_after_seconds)
        return result

    async def _worker(self, index: int) -> None:
        while not self._shutdown_event.is_set():
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=WORKER_POLL_SECONDS)
            except TimeoutError:
                continue
            try:
                await self.process(item)
            except Exception:
                logger.exception(
                    "Worker failed to process item",
                    extra={"worker": index, "kind": item[0], "key": str(item[1])},
                )
            finally:
                self._queue.done(item)

    def handle_event(self, kind: str, event: Any) -> None:
        """Translate a watch event into work items."""
        if event.type != EVENT_DELETED:
            self._queue.enqueue(kind, event.key)
        # A changed or deleted child is re-projected from its User
        if kind == KIND_AWS_ACCOUNT and event.owner is not None:
            self._queue.enqueue(KIND_USER, event.owner)

    def _consume(self, watcher: Watcher, kind: str, plural: str, loop: Any) -> None:
        for event in watcher.stream(plural, self._namespace):
            if self._shutdown_event.is_set():
                return
            loop.call_soon_threadsafe(self.handle_event, kind, event)

    async def _watch(self, kind: str, plural: str, executor: ThreadPoolExecutor) -> None:
        loop = asyncio.get_running_loop()
        watcher = self._watcher_factory()
        self._watchers.append(watcher)

        while not self._shutdown_event.is_set():
            try:
                await loop.run_in_executor(executor, self._consume, watcher, kind, plural, loop)
                logger.debug("Watch expired, reconnecting", extra={"kind": kind})
                continue
            except Exception as e:
                logger.warning(
                    "Watch failed, retrying",
                    extra={"kind": kind, "error": str(e), "error_type": type(e).__name__},
                )
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=WATCH_RETRY_SECONDS)
            except TimeoutError:
                pass

    async def resync(self) -> None:
        """Enqueue every known AwsAccount and User record."""
        loop = asyncio.get_running_loop()
        accounts = await loop.run_in_executor(
            None, self._store.list_aws_accounts, self._namespace
        )
        users = await loop.run_in_executor(None, self._store.list_users, self._namespace)
        for account in accounts:
            self._queue.enqueue(KIND_AWS_ACCOUNT, account.key)
        for user in users:
            self._queue.enqueue(KIND_USER, user.key)
        logger.info(
            "Resync enqueued records", extra={"accounts": len(accounts), "users": len(users)}
        )

    async def _resync_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self._resync_interval_seconds
                )
            except TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            try:
                await self.resync()
            except Exception as e:
                logger.error(
                    "Resync failed",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )

    async def run(self) -> None:
        """Run workers, watches and the resync loop until shutdown."""
        logger.info(
            "Starting manager",
            extra={
                "namespace": self._namespace or "*",
                "workers": self._workers,
                "resync_interval_seconds": self._resync_interval_seconds,
            },
        )

        executor = ThreadPoolExecutor(
            max_workers=len(WATCHED_KINDS), thread_name_prefix="kuadra-watch"
        )
        workers = [asyncio.create_task(self._worker(i)) for i in range(self._workers)]
        background = [
            asyncio.create_task(self._watch(kind, plural, executor))
            for kind, plural in WATCHED_KINDS
        ]
        background.append(asyncio.create_task(self._resync_loop()))

        try:
            await self._shutdown_event.wait()
        finally:
            self._shutdown_event.set()
            for watcher in self._watchers:
                watcher.stop()
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            await asyncio.gather(*workers, return_exceptions=True)
            self._queue.close()
            # Watch threads exit on their next event or server timeout
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info("Manager shutdown complete")

    def shutdown(self) -> None:
        """Signal the manager to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()
