# printer_contexts/request_queue.py

import asyncio
import enum
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .backends import ConcurrencyClass, PrinterBackend
from .config import CoordinatorConfig
from .context_manager import ContextManager
from .errors import ContextNotFoundError, QueueOverflowError, UnsupportedOperationError
from .events import ContextRemoved, EventBus

logger = logging.getLogger(__name__)

RequestFactory = Callable[[PrinterBackend, str], Awaitable[Any]]


async def fetch_thumbnail(backend: PrinterBackend, key: str) -> Any:
    return await backend.get_job_thumbnail(key)


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RequestResult:
    key: str
    outcome: Outcome
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass(eq=False)
class QueueEntry:
    key: str
    priority: int
    sequence: int
    future: asyncio.Future
    retry_count: int = 0
    cancelled: bool = False
    exchanging: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def sort_key(self):
        # Higher priority first, then first-enqueued-first-served
        return (-self.priority, self.sequence)

    def resolve(self, result: RequestResult) -> None:
        if not self.future.done():
            self.future.set_result(result)


class _ContextQueue:
    """Pending heap, in-flight set and dedup map of one context."""

    def __init__(self, context_id: str, backend: PrinterBackend, limit: int):
        self.context_id = context_id
        self.backend = backend
        self.limit = limit
        self.heap: List[tuple] = []
        self.entries: Dict[str, QueueEntry] = {}
        self.in_flight: Set[QueueEntry] = set()
        self.max_in_flight_seen = 0

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self.entries.values() if entry not in self.in_flight)


class RequestQueue:
    """
    Per-context queue for expensive auxiliary requests such as job thumbnails.

    Each context gets a concurrency limit from its backend's concurrency class
    (single-channel legacy printers: exactly one request at a time). Requests
    for the same key share one underlying operation. Failed requests are
    retried with a doubling delay; cancelled requests resolve as cancelled,
    never as errors.

    Cancellation is cooperative. An exchange already running on the printer
    is allowed to finish and its result is discarded; its slot frees when it
    returns, so a single-channel printer never sees two overlapping requests.
    Only removing the context aborts running exchanges, because the backend is
    disposed with it.

    Args:
        config: Concurrency limits, retry settings and queue size
        events: Bus the queue listens to for context removal
        contexts: Context manager providing backends
        request_factory: Coroutine performing the request for a key;
            defaults to fetching the job thumbnail
    """

    def __init__(self, config: CoordinatorConfig, events: EventBus, contexts: ContextManager,
                 request_factory: RequestFactory = fetch_thumbnail):
        self.config = config
        self.contexts = contexts
        self.request_factory = request_factory
        self._queues: Dict[str, _ContextQueue] = {}
        self._sequence = itertools.count()
        self._unsubscribe = events.subscribe(ContextRemoved, self._on_context_removed)

    def concurrency_limit(self, backend: PrinterBackend) -> int:
        if backend.get_capabilities().concurrency is ConcurrencyClass.SINGLE_CHANNEL:
            return self.config.legacy_request_concurrency
        return self.config.modern_request_concurrency

    def _queue_for(self, context_id: str) -> _ContextQueue:
        queue = self._queues.get(context_id)
        context = self.contexts.get_context(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        if queue is None or queue.backend is not context.backend:
            queue = _ContextQueue(context_id, context.backend, self.concurrency_limit(context.backend))
            self._queues[context_id] = queue
            logger.debug("[%s] Request queue ready, %d concurrent", context_id, queue.limit)
        return queue

    async def enqueue(self, context_id: str, key: str, priority: int = 0) -> RequestResult:
        """
        Request ``key`` for a context and wait for its result.

        A second request for a key that is still pending or in flight shares
        the first one's result. Cancelling the awaiting caller does not cancel
        the shared request.

        Raises:
            ContextNotFoundError: If the context does not exist
            QueueOverflowError: If the context already has max_queue_size pending entries
        """
        queue = self._queue_for(context_id)
        entry = queue.entries.get(key)
        if entry is not None:
            if priority > entry.priority and entry not in queue.in_flight:
                self._reprioritize(queue, entry, priority)
            logger.debug("[%s] Joining pending request for %s", context_id, key)
        else:
            if queue.pending_count >= self.config.max_queue_size:
                raise QueueOverflowError(
                    f"[{context_id}] Request queue full ({self.config.max_queue_size} pending)"
                )
            entry = QueueEntry(key=key, priority=priority, sequence=next(self._sequence),
                               future=asyncio.get_running_loop().create_future())
            queue.entries[key] = entry
            heapq.heappush(queue.heap, (entry.sort_key(), entry.sequence, entry))
            self._pump(queue)
        return await asyncio.shield(entry.future)

    def _reprioritize(self, queue: _ContextQueue, entry: QueueEntry, priority: int) -> None:
        entry.priority = priority
        queue.heap = [item for item in queue.heap if item[2] is not entry]
        heapq.heapify(queue.heap)
        heapq.heappush(queue.heap, (entry.sort_key(), entry.sequence, entry))

    def _pump(self, queue: _ContextQueue) -> None:
        while len(queue.in_flight) < queue.limit and queue.heap:
            _, _, entry = heapq.heappop(queue.heap)
            if entry.cancelled:
                continue
            queue.in_flight.add(entry)
            queue.max_in_flight_seen = max(queue.max_in_flight_seen, len(queue.in_flight))
            entry.task = asyncio.create_task(self._process(queue, entry),
                                             name=f"request_{queue.context_id}_{entry.key}")

    async def _process(self, queue: _ContextQueue, entry: QueueEntry) -> None:
        delay = self.config.request_retry_delay
        try:
            while True:
                if entry.cancelled:
                    entry.resolve(RequestResult(entry.key, Outcome.CANCELLED))
                    return
                entry.exchanging = True
                try:
                    value = await self.request_factory(queue.backend, entry.key)
                except asyncio.CancelledError:
                    raise
                except UnsupportedOperationError as e:
                    entry.resolve(RequestResult(entry.key, Outcome.FAILED, error=str(e)))
                    return
                except Exception as e:
                    entry.exchanging = False
                    if entry.cancelled:
                        entry.resolve(RequestResult(entry.key, Outcome.CANCELLED))
                        return
                    if entry.retry_count >= self.config.request_max_retries:
                        logger.warning("[%s] Request %s failed after %d retries: %s",
                                       queue.context_id, entry.key, entry.retry_count, e)
                        entry.resolve(RequestResult(entry.key, Outcome.FAILED, error=str(e)))
                        return
                    entry.retry_count += 1
                    logger.debug("[%s] Request %s failed (%s), retry %d in %.2fs",
                                 queue.context_id, entry.key, e, entry.retry_count, delay)
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue

                if entry.cancelled:
                    entry.resolve(RequestResult(entry.key, Outcome.CANCELLED))
                else:
                    entry.resolve(RequestResult(entry.key, Outcome.SUCCESS, value=value))
                return
        except asyncio.CancelledError:
            entry.resolve(RequestResult(entry.key, Outcome.CANCELLED))
            raise
        finally:
            queue.in_flight.discard(entry)
            if queue.entries.get(entry.key) is entry:
                del queue.entries[entry.key]
            if self._queues.get(queue.context_id) is queue:
                self._pump(queue)

    def cancel_all(self, context_id: str) -> int:
        """
        Cancel every pending and in-flight request of a context.

        Callers receive a cancelled result at once. Pending entries are dropped.
        An in-flight exchange runs to completion and its result is discarded;
        its slot frees when it returns, and a following enqueue is processed
        from then on. In-flight entries waiting out a retry delay are stopped
        right away.

        Returns:
            Number of requests cancelled
        """
        queue = self._queues.get(context_id)
        if queue is None:
            return 0
        entries = list(queue.entries.values())
        for entry in entries:
            entry.cancelled = True
            entry.resolve(RequestResult(entry.key, Outcome.CANCELLED))
            if entry.task is not None and not entry.exchanging and not entry.task.done():
                # Not talking to the printer: free the slot now
                entry.task.cancel()
                queue.in_flight.discard(entry)
        # A new request for the same key must not join a cancelled entry
        queue.entries.clear()
        queue.heap.clear()
        if entries:
            logger.info("[%s] Cancelled %d request(s), %d still finishing on the printer",
                        context_id, len(entries), sum(1 for e in queue.in_flight if e.exchanging))
        return len(entries)

    def cancel_everything(self) -> int:
        return sum(self.cancel_all(context_id) for context_id in list(self._queues))

    def _abort(self, queue: _ContextQueue) -> None:
        # The backend is being disposed, running exchanges cannot complete
        for entry in list(queue.in_flight):
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()

    def _on_context_removed(self, event: ContextRemoved) -> None:
        self.cancel_all(event.context_id)
        queue = self._queues.pop(event.context_id, None)
        if queue is not None:
            self._abort(queue)

    def in_flight_count(self, context_id: str) -> int:
        queue = self._queues.get(context_id)
        return len(queue.in_flight) if queue else 0

    def pending_count(self, context_id: str) -> int:
        queue = self._queues.get(context_id)
        return queue.pending_count if queue else 0

    def max_in_flight_seen(self, context_id: str) -> int:
        queue = self._queues.get(context_id)
        return queue.max_in_flight_seen if queue else 0

    def dispose(self) -> None:
        self.cancel_everything()
        for queue in self._queues.values():
            self._abort(queue)
        self._queues.clear()
        self._unsubscribe()
