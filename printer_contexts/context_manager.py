# printer_contexts/context_manager.py

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .backends import Feature, PrinterBackend
from .config import CoordinatorConfig
from .dispatcher import BackendDispatcher
from .errors import ContextNotFoundError, DuplicateDeviceError, ResourceExhaustedError
from .events import ContextCreated, ContextRemoved, ContextSwitched, ContextUpdated, EventBus
from .models import ConnectionState, ContextInfo, PrinterDetails
from .ports import PortAllocator
from .printer_status import PrinterStatus

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "details", "connection_state")


@dataclass
class PrinterContext:
    """All state of one live printer connection."""
    id: str
    name: str
    details: PrinterDetails
    backend: PrinterBackend
    connection_state: ConnectionState = "connecting"
    is_active: bool = False
    status: Optional[PrinterStatus] = None
    camera_port: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_activity = time.time()

    def to_info(self) -> ContextInfo:
        camera_url = f"http://localhost:{self.camera_port}/stream" if self.camera_port is not None else None
        return ContextInfo(
            id=self.id,
            name=self.name,
            ip=self.details.ip_address,
            model=self.details.type_name,
            serial_number=self.details.serial_number,
            status=self.connection_state,
            is_active=self.is_active,
            has_camera=self.camera_port is not None,
            camera_url=camera_url,
            created_at=self.created_at,
            last_activity=self.last_activity,
        )


class ContextManager:
    """
    Owns the map of live printer contexts and the active context pointer.

    Every mutation of the map happens in a synchronous section of one of the
    methods below, so no other coroutine can observe a half-created or
    half-removed context. A creation in progress reserves the printer identity
    up front; a concurrent creation for the same printer is rejected.

    Args:
        config: Coordinator settings
        events: Bus used for all lifecycle events
        dispatcher: Builds the backend for each new context
        ports: Allocator for camera proxy ports
    """

    def __init__(self, config: CoordinatorConfig, events: EventBus,
                 dispatcher: BackendDispatcher, ports: PortAllocator):
        self.config = config
        self.events = events
        self.dispatcher = dispatcher
        self.ports = ports
        self._contexts: Dict[str, PrinterContext] = {}
        self._active_context_id: Optional[str] = None
        self._pending_identities: Set[str] = set()
        self._counter = itertools.count(1)

    def _generate_context_id(self) -> str:
        return f"context-{next(self._counter)}-{int(time.time() * 1000)}"

    def _find_by_identity(self, identity: str) -> Optional[PrinterContext]:
        for context in self._contexts.values():
            if context.details.identity == identity:
                return context
        return None

    async def create_context(self, details: PrinterDetails, primary_client: Any,
                             secondary_client: Optional[Any] = None, *,
                             replace_existing: bool = False, require_stream: bool = False,
                             activate: Optional[bool] = None) -> str:
        """
        Create a context for a newly connected printer.

        Args:
            details: Connection details of the printer
            primary_client: Client the backend drives (HTTP client for 5M family)
            secondary_client: Legacy client for dual-API printers
            replace_existing: Remove an existing context for the same printer
                instead of failing
            require_stream: Fail instead of continuing without a camera port
            activate: Make the new context active. None activates it only when
                no context is active yet

        Returns:
            The new context id

        Raises:
            DuplicateDeviceError: If the printer is already connected
            ResourceExhaustedError: If require_stream is set and no port is free
            BackendInitializationError, DeviceConnectionError, ExecutionFailedError:
                If the backend could not be built or initialized
        """
        identity = details.identity
        if identity in self._pending_identities:
            raise DuplicateDeviceError(identity, "a pending connection")
        existing = self._find_by_identity(identity)
        if existing is not None and not replace_existing:
            raise DuplicateDeviceError(identity, existing.id)

        self._pending_identities.add(identity)
        try:
            if existing is not None:
                logger.info("[%s] Replacing context for reconnected printer %s", existing.id, identity)
                await self.remove_context(existing.id)

            backend = self.dispatcher.create_backend(details, primary_client, secondary_client)
            try:
                await backend.initialize()
            except Exception:
                await backend.dispose()
                raise

            # From here to the end no awaits: the context appears atomically.
            camera_port = None
            if backend.supports(Feature.CAMERA):
                try:
                    camera_port = self.ports.allocate()
                except ResourceExhaustedError as e:
                    if require_stream:
                        await backend.dispose()
                        raise
                    logger.warning("[%s] Continuing without camera stream: %s", details.name, e)

            context_id = self._generate_context_id()
            context = PrinterContext(
                id=context_id,
                name=details.name,
                details=details,
                backend=backend,
                connection_state="connected",
                camera_port=camera_port,
            )
            self._contexts[context_id] = context

            previous_id = self._active_context_id
            should_activate = activate if activate is not None else previous_id is None
            if should_activate:
                self._set_active(context)
        finally:
            self._pending_identities.discard(identity)

        logger.info("[%s] Created context for printer: %s (%s)", context_id, details.name, backend.model_type)
        self.events.publish(ContextCreated(context_id=context_id, info=context.to_info()))
        if should_activate:
            self.events.publish(ContextSwitched(context_id=context_id, previous_id=previous_id,
                                                info=context.to_info()))
        return context_id

    def _set_active(self, context: PrinterContext) -> None:
        if self._active_context_id is not None:
            previous = self._contexts.get(self._active_context_id)
            if previous is not None:
                previous.is_active = False
        context.is_active = True
        context.touch()
        self._active_context_id = context.id

    def switch_context(self, context_id: str) -> None:
        """
        Make a context the active one.

        Subscribers have received context-switched by the time this returns.

        Raises:
            ContextNotFoundError: If the context does not exist
        """
        context = self._contexts.get(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        previous_id = self._active_context_id
        if previous_id == context_id:
            logger.debug("[%s] Already active", context_id)
            return

        self._set_active(context)
        logger.info("Switched from %s to %s", previous_id or "none", context_id)
        self.events.publish(ContextSwitched(context_id=context_id, previous_id=previous_id,
                                            info=context.to_info()))

    async def remove_context(self, context_id: str) -> None:
        """
        Remove a context, release its camera port and dispose its backend.
        Removing an unknown context is a no-op.
        """
        context = self._contexts.pop(context_id, None)
        if context is None:
            logger.debug("[%s] Remove requested for unknown context", context_id)
            return

        was_active = self._active_context_id == context_id
        if was_active:
            self._active_context_id = None
        context.is_active = False
        context.connection_state = "disconnected"
        if context.camera_port is not None:
            self.ports.release(context.camera_port)
            context.camera_port = None

        logger.info("[%s] Removed context", context_id)
        self.events.publish(ContextRemoved(context_id=context_id, was_active=was_active))
        await context.backend.dispose()

    async def remove_all(self) -> None:
        for context_id in list(self._contexts):
            await self.remove_context(context_id)

    def update_context(self, context_id: str, **patch) -> bool:
        """
        Change name, details or connection_state of a context.

        Emits context-updated with the fields that actually changed.

        Returns:
            True if something changed

        Raises:
            ContextNotFoundError: If the context does not exist
            ValueError: On fields that may not be changed
        """
        context = self._contexts.get(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        invalid = [key for key in patch if key not in UPDATABLE_FIELDS]
        if invalid:
            raise ValueError(f"Cannot update context field(s): {', '.join(invalid)}")

        changed = {key: value for key, value in patch.items() if getattr(context, key) != value}
        if not changed:
            return False
        for key, value in changed.items():
            setattr(context, key, value)
        context.touch()
        logger.debug("[%s] Updated %s", context_id, ", ".join(changed))
        self.events.publish(ContextUpdated(context_id=context_id, patch=changed))
        return True

    def set_connection_state(self, context_id: str, state: ConnectionState) -> bool:
        if context_id not in self._contexts:
            return False
        return self.update_context(context_id, connection_state=state)

    def record_status(self, context_id: str, status: PrinterStatus) -> None:
        """Store the latest polled snapshot. Unknown contexts are ignored."""
        context = self._contexts.get(context_id)
        if context is not None:
            context.status = status
            context.touch()

    def get_active_context(self) -> Optional[PrinterContext]:
        if self._active_context_id is None:
            return None
        return self._contexts.get(self._active_context_id)

    def get_active_context_id(self) -> Optional[str]:
        return self._active_context_id

    def get_context(self, context_id: str) -> Optional[PrinterContext]:
        return self._contexts.get(context_id)

    def require_context(self, context_id: Optional[str] = None) -> PrinterContext:
        """Return the named context, or the active one when context_id is None."""
        if context_id is None:
            context = self.get_active_context()
            if context is None:
                raise ContextNotFoundError("(active)")
            return context
        context = self._contexts.get(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        return context

    def has_context(self, context_id: str) -> bool:
        return context_id in self._contexts

    def list_contexts(self) -> List[ContextInfo]:
        return [context.to_info() for context in self._contexts.values()]

    def all_contexts(self) -> List[PrinterContext]:
        return list(self._contexts.values())

    @property
    def context_count(self) -> int:
        return len(self._contexts)
