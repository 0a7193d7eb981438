# printer_contexts/runtime.py

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .backends import BackendCapabilities
from .config import CoordinatorConfig
from .context_manager import ContextManager, PrinterContext
from .dispatcher import BackendDispatcher
from .errors import TRANSIENT_ERRORS
from .events import Event, EventBus
from .models import ContextInfo, PrinterDetails
from .polling import PollingCoordinator
from .ports import PortAllocator
from .printer_status import MaterialStationStatus, PrinterStatus
from .request_queue import RequestFactory, RequestQueue, RequestResult, fetch_thumbnail

logger = logging.getLogger(__name__)

# Repeating these could print the same file twice or replay raw G-code
NON_IDEMPOTENT_OPERATIONS = frozenset({"start_job", "send_command"})


class Runtime:
    """
    Wires the coordination components together and exposes the operation
    contract used by UI and connection-flow collaborators.

    Device operations take an optional ``context_id``; None means the active
    context. Operations failing with a transient error (printer unreachable
    or command rejected) are retried up to ``command_max_retries`` times
    with a doubling delay, except job starts and raw commands. Unsupported
    operations fail at once.

    Args:
        config: Settings passed to every component
        request_factory: Request performed by the bounded request queue
    """

    def __init__(self, config: Optional[CoordinatorConfig] = None,
                 request_factory: RequestFactory = fetch_thumbnail):
        self.config = config or CoordinatorConfig()
        self.events = EventBus()
        self.ports = PortAllocator(self.config.port_range_start, self.config.port_range_end)
        self.dispatcher = BackendDispatcher(command_timeout=self.config.command_timeout)
        self.contexts = ContextManager(self.config, self.events, self.dispatcher, self.ports)
        self.polling = PollingCoordinator(self.config, self.events, self.contexts)
        self.requests = RequestQueue(self.config, self.events, self.contexts, request_factory)
        self._disposed = False

    ###########################################################################
    # Context lifecycle
    ###########################################################################
    async def create_context(self, details: PrinterDetails, primary_client: Any,
                             secondary_client: Optional[Any] = None, **options) -> str:
        return await self.contexts.create_context(details, primary_client, secondary_client, **options)

    def switch_context(self, context_id: str) -> None:
        self.contexts.switch_context(context_id)

    async def remove_context(self, context_id: str) -> None:
        await self.contexts.remove_context(context_id)

    def list_contexts(self) -> List[ContextInfo]:
        return self.contexts.list_contexts()

    def get_active_context(self) -> Optional[PrinterContext]:
        return self.contexts.get_active_context()

    def subscribe(self, event_type, callback: Callable[[Event], None]) -> Callable[[], None]:
        return self.events.subscribe(event_type, callback)

    ###########################################################################
    # Polling
    ###########################################################################
    def pause_polling(self, context_id: Optional[str] = None) -> None:
        self.polling.pause_polling(context_id)

    def resume_polling(self, context_id: Optional[str] = None) -> None:
        self.polling.resume_polling(context_id)

    ###########################################################################
    # Request queue
    ###########################################################################
    async def enqueue_request(self, key: str, context_id: Optional[str] = None,
                              priority: int = 0) -> RequestResult:
        context = self.contexts.require_context(context_id)
        return await self.requests.enqueue(context.id, key, priority)

    def cancel_requests(self, context_id: Optional[str] = None) -> int:
        context = self.contexts.require_context(context_id)
        return self.requests.cancel_all(context.id)

    ###########################################################################
    # Device operations
    ###########################################################################
    async def _route(self, context_id: Optional[str], operation: str, *args, **kwargs) -> Any:
        context = self.contexts.require_context(context_id)
        context.touch()
        retries = 0 if operation in NON_IDEMPOTENT_OPERATIONS else self.config.command_max_retries
        delay = self.config.command_retry_delay
        for attempt in range(retries + 1):
            try:
                return await self.dispatcher.route(context.backend, operation, *args, **kwargs)
            except TRANSIENT_ERRORS as e:
                if attempt >= retries:
                    raise
                logger.debug("[%s] %s failed (%s), retry %d in %.2fs",
                             context.id, operation, e, attempt + 1, delay)
                await asyncio.sleep(delay)
                delay *= 2

    def get_capabilities(self, context_id: Optional[str] = None) -> BackendCapabilities:
        return self.contexts.require_context(context_id).backend.get_capabilities()

    async def get_status(self, context_id: Optional[str] = None) -> PrinterStatus:
        return await self._route(context_id, "get_status")

    async def send_command(self, command: str, context_id: Optional[str] = None) -> str:
        return await self._route(context_id, "send_command", command)

    async def start_job(self, file_name: str, context_id: Optional[str] = None, *,
                        leveling: bool = False, material_mappings=None) -> None:
        await self._route(context_id, "start_job", file_name, leveling=leveling,
                          material_mappings=material_mappings)

    async def pause_job(self, context_id: Optional[str] = None) -> None:
        await self._route(context_id, "pause_job")

    async def resume_job(self, context_id: Optional[str] = None) -> None:
        await self._route(context_id, "resume_job")

    async def cancel_job(self, context_id: Optional[str] = None) -> None:
        await self._route(context_id, "cancel_job")

    async def list_local_jobs(self, context_id: Optional[str] = None) -> List[str]:
        return await self._route(context_id, "list_local_jobs")

    async def list_recent_jobs(self, context_id: Optional[str] = None) -> List[str]:
        return await self._route(context_id, "list_recent_jobs")

    async def get_job_thumbnail(self, file_name: str, context_id: Optional[str] = None) -> Optional[bytes]:
        return await self._route(context_id, "get_job_thumbnail", file_name)

    async def get_model_preview(self, context_id: Optional[str] = None) -> Optional[bytes]:
        return await self._route(context_id, "get_model_preview")

    async def set_led(self, on: bool, context_id: Optional[str] = None) -> None:
        await self._route(context_id, "set_led", on)

    async def set_filtration(self, mode: str, context_id: Optional[str] = None) -> None:
        await self._route(context_id, "set_filtration", mode)

    async def query_material_slots(self, context_id: Optional[str] = None) -> MaterialStationStatus:
        return await self._route(context_id, "query_material_slots")

    ###########################################################################
    # Shutdown
    ###########################################################################
    async def dispose(self) -> None:
        """Stop polling, cancel queued requests and remove every context."""
        if self._disposed:
            return
        self._disposed = True
        await self.polling.dispose()
        self.requests.dispose()
        await self.contexts.remove_all()
        self.ports.reset()
        self.events.clear()
        logger.info("Runtime disposed")


def build_runtime(config: Optional[CoordinatorConfig] = None, **kwargs) -> Runtime:
    """Construct an independent runtime (tests, embedding)."""
    return Runtime(config, **kwargs)


_runtime: Optional[Runtime] = None


def init_runtime(config: Optional[CoordinatorConfig] = None, **kwargs) -> Runtime:
    """
    Create the process-wide runtime.

    Raises:
        RuntimeError: If it was already initialized
    """
    global _runtime
    if _runtime is not None:
        raise RuntimeError("Runtime already initialized")
    _runtime = build_runtime(config, **kwargs)
    return _runtime


def get_runtime() -> Runtime:
    """
    Return the process-wide runtime.

    Raises:
        RuntimeError: If init_runtime() has not been called
    """
    if _runtime is None:
        raise RuntimeError("Runtime not initialized, call init_runtime() first")
    return _runtime


async def dispose_runtime() -> None:
    global _runtime
    runtime, _runtime = _runtime, None
    if runtime is not None:
        await runtime.dispose()
