# printer_contexts/polling.py

import asyncio
import enum
import logging
from typing import Dict, List, Optional

from .config import CoordinatorConfig
from .context_manager import ContextManager
from .errors import TRANSIENT_ERRORS, ContextNotFoundError, UnsupportedOperationError
from .events import (
    ContextCreated,
    ContextRemoved,
    ContextSwitched,
    EventBus,
    PollingData,
    PollingError,
    PollingStarted,
    PollingStopped,
)
from .printer_status import PrinterStatus

logger = logging.getLogger(__name__)


class PollingState(str, enum.Enum):
    STOPPED = "stopped"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ContextPoller:
    """
    Status polling loop of a single context.

    The loop keeps one schedule: the next tick is due one interval after the
    start of the previous tick. Changing the interval recomputes that due time
    from the previous tick and wakes the loop, so a promotion never skips a
    poll and a demotion never causes an extra one. Pausing holds the loop at
    the next due tick without touching the schedule.

    Args:
        context_id: Context being polled
        contexts: Context manager owning the context
        events: Bus for polling-data and polling-error
        config: Intervals and retry settings
        active: Start at the active (fast) interval
    """

    def __init__(self, context_id: str, contexts: ContextManager, events: EventBus,
                 config: CoordinatorConfig, active: bool = False):
        self.context_id = context_id
        self._contexts = contexts
        self._events = events
        self._config = config
        self._state = PollingState.ACTIVE if active else PollingState.INACTIVE
        self._interval = self._interval_for(self._state)

        self._task: Optional[asyncio.Task] = None
        self._should_run = False
        self._paused = False
        self._wakeup = asyncio.Event()
        self._resumed = asyncio.Event()
        self._resumed.set()

        self._last_tick: Optional[float] = None
        self._next_due: Optional[float] = None
        self.current_status: Optional[PrinterStatus] = None
        self.poll_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

    def _interval_for(self, state: PollingState) -> float:
        if state is PollingState.ACTIVE:
            return self._config.active_poll_interval
        return self._config.inactive_poll_interval

    @property
    def state(self) -> PollingState:
        return self._state if self._should_run else PollingState.STOPPED

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._should_run

    @property
    def paused(self) -> bool:
        return self._paused

    def start(self) -> None:
        """Start the loop. The first poll happens immediately."""
        if self._should_run:
            return
        self._should_run = True
        self._next_due = asyncio.get_running_loop().time()
        self._task = asyncio.create_task(self._poll_loop(), name=f"poll_{self.context_id}")

    def stop(self) -> None:
        """Stop the loop without waiting for it to finish."""
        self._should_run = False
        if self._task and not self._task.done():
            self._task.cancel()

    async def wait_stopped(self) -> None:
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def set_active(self, active: bool) -> None:
        """Reclassify the loop; takes effect before its next tick."""
        state = PollingState.ACTIVE if active else PollingState.INACTIVE
        if state is self._state:
            return
        self._state = state
        self._interval = self._interval_for(state)
        if self._last_tick is not None:
            self._next_due = self._last_tick + self._interval
        logger.debug("[%s] Polling every %.1fs (%s)", self.context_id, self._interval, state.value)
        self._wakeup.set()

    def pause(self) -> None:
        self._paused = True
        self._resumed.clear()

    def resume(self) -> None:
        self._paused = False
        self._resumed.set()

    async def _poll_loop(self):
        loop = asyncio.get_running_loop()
        logger.debug("[%s] Poll loop started", self.context_id)
        try:
            while self._should_run:
                delay = self._next_due - loop.time()
                if delay > 0:
                    self._wakeup.clear()
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                if self._paused:
                    await self._resumed.wait()
                    continue

                self._last_tick = loop.time()
                await self.poll_once()
                self._next_due = self._last_tick + self._interval
        except asyncio.CancelledError:
            logger.debug("[%s] Poll loop cancelled", self.context_id)
            raise
        finally:
            logger.debug("[%s] Poll loop exiting", self.context_id)

    async def poll_once(self) -> bool:
        """
        Fetch status with bounded retries. Returns True on success.

        Failures end in a polling-error event, never in an exception.
        """
        context = self._contexts.get_context(self.context_id)
        if context is None:
            return False

        max_retries = self._config.poll_max_retries
        for attempt in range(1, max_retries + 2):
            try:
                status = await context.backend.get_status()
            except UnsupportedOperationError as e:
                self._report_error(str(e), attempt)
                return False
            except TRANSIENT_ERRORS as e:
                if attempt <= max_retries and self._should_run:
                    logger.debug("[%s] Poll attempt %d failed: %s", self.context_id, attempt, e)
                    await asyncio.sleep(self._config.poll_retry_delay * attempt)
                    continue
                self._report_error(str(e), attempt)
                self._contexts.set_connection_state(self.context_id, "error")
                return False
            except Exception as e:
                logger.exception("[%s] Unexpected polling failure: %s", self.context_id, e)
                self._report_error(str(e), attempt)
                return False

            self.poll_count += 1
            self.current_status = status
            self._contexts.record_status(self.context_id, status)
            self._contexts.set_connection_state(self.context_id, "connected")
            self._events.publish(PollingData(context_id=self.context_id, status=status))
            return True
        return False

    def _report_error(self, error: str, attempts: int) -> None:
        self.error_count += 1
        self.last_error = error
        logger.warning("[%s] Polling failed after %d attempt(s): %s", self.context_id, attempts, error)
        self._events.publish(PollingError(context_id=self.context_id, error=error, attempts=attempts))

    def stats(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "interval": self._interval,
            "paused": self._paused,
            "poll_count": self.poll_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class PollingCoordinator:
    """
    Runs one ContextPoller per context and keeps their frequencies in line
    with the active context.

    Reacts to the context manager's events synchronously: on context-switched
    the previous poller is demoted and the new one promoted during delivery,
    i.e. before either can tick again.

    Args:
        config: Intervals, retry settings and auto start flag
        events: Shared event bus
        contexts: Context manager providing backends and active state
    """

    def __init__(self, config: CoordinatorConfig, events: EventBus, contexts: ContextManager):
        self.config = config
        self.events = events
        self.contexts = contexts
        self._pollers: Dict[str, ContextPoller] = {}
        self._unsubscribers = [
            events.subscribe(ContextCreated, self._on_context_created),
            events.subscribe(ContextSwitched, self._on_context_switched),
            events.subscribe(ContextRemoved, self._on_context_removed),
        ]

    def _on_context_created(self, event: ContextCreated) -> None:
        if self.config.auto_start_polling:
            self.start_polling_for_context(event.context_id)

    def _on_context_switched(self, event: ContextSwitched) -> None:
        logger.debug("Context switched from %s to %s", event.previous_id or "none", event.context_id)
        if event.previous_id is not None:
            previous = self._pollers.get(event.previous_id)
            if previous is not None:
                previous.set_active(False)

        poller = self._pollers.get(event.context_id)
        if poller is not None:
            poller.set_active(True)
            # Hand the UI the cached snapshot right away instead of waiting a tick
            if poller.current_status is not None:
                self.events.publish(PollingData(context_id=event.context_id, status=poller.current_status))

    def _on_context_removed(self, event: ContextRemoved) -> None:
        self.stop_polling_for_context(event.context_id)

    def start_polling_for_context(self, context_id: str) -> None:
        """
        Start the loop for a context at the frequency matching its active flag.

        Raises:
            ContextNotFoundError: If the context does not exist
        """
        if context_id in self._pollers:
            logger.debug("[%s] Already polling", context_id)
            return
        context = self.contexts.get_context(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)

        poller = ContextPoller(context_id, self.contexts, self.events, self.config, active=context.is_active)
        self._pollers[context_id] = poller
        poller.start()
        logger.info("[%s] Started %s polling (%.1fs)", context_id, poller.state.value, poller.interval)
        self.events.publish(PollingStarted(context_id=context_id))

    def stop_polling_for_context(self, context_id: str) -> None:
        poller = self._pollers.pop(context_id, None)
        if poller is None:
            logger.debug("[%s] No poller to stop", context_id)
            return
        poller.stop()
        logger.info("[%s] Stopped polling", context_id)
        self.events.publish(PollingStopped(context_id=context_id))

    def pause_polling(self, context_id: Optional[str] = None) -> None:
        """Suspend ticks of one context, or of all contexts when context_id is None."""
        for poller in self._select(context_id):
            poller.pause()

    def resume_polling(self, context_id: Optional[str] = None) -> None:
        for poller in self._select(context_id):
            poller.resume()

    def _select(self, context_id: Optional[str]) -> List[ContextPoller]:
        if context_id is None:
            return list(self._pollers.values())
        poller = self._pollers.get(context_id)
        return [poller] if poller is not None else []

    def get_poller(self, context_id: str) -> Optional[ContextPoller]:
        return self._pollers.get(context_id)

    def is_polling_for_context(self, context_id: str) -> bool:
        poller = self._pollers.get(context_id)
        return bool(poller and poller.running)

    def get_polling_data_for_context(self, context_id: str) -> Optional[PrinterStatus]:
        poller = self._pollers.get(context_id)
        return poller.current_status if poller else None

    def get_interval(self, context_id: str) -> Optional[float]:
        poller = self._pollers.get(context_id)
        return poller.interval if poller else None

    def get_stats(self, context_id: str) -> Optional[Dict[str, object]]:
        poller = self._pollers.get(context_id)
        return poller.stats() if poller else None

    @property
    def polling_contexts(self) -> List[str]:
        return list(self._pollers)

    async def stop_all(self) -> None:
        pollers = list(self._pollers.values())
        for context_id in list(self._pollers):
            self.stop_polling_for_context(context_id)
        for poller in pollers:
            await poller.wait_stopped()

    async def dispose(self) -> None:
        await self.stop_all()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
