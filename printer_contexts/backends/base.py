# printer_contexts/backends/base.py

import asyncio
import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, ClassVar, Dict, FrozenSet, List, Optional

from ..errors import (
    DeviceConnectionError,
    ExecutionFailedError,
    PrinterContextError,
    UnsupportedOperationError,
)
from ..models import PrinterDetails
from ..printer_status import MaterialStationStatus, PrinterStatus

logger = logging.getLogger(__name__)


class Feature(str, enum.Enum):
    STATUS = "status"
    GCODE = "gcode"
    JOB_CONTROL = "job-control"
    LOCAL_JOBS = "local-jobs"
    RECENT_JOBS = "recent-jobs"
    THUMBNAILS = "thumbnails"
    MODEL_PREVIEW = "model-preview"
    CAMERA = "camera"
    LED_CONTROL = "led-control"
    FILTRATION = "filtration"
    MATERIAL_STATION = "material-station"


class BackendFamily(str, enum.Enum):
    LEGACY = "legacy"
    DUAL_API = "dual-api"
    MULTI_MATERIAL = "multi-material"


class ConcurrencyClass(str, enum.Enum):
    SINGLE_CHANNEL = "single-channel"
    MULTI_CHANNEL = "multi-channel"


@dataclass(frozen=True)
class BackendCapabilities:
    """Static capability descriptor declared by every backend variant"""
    model_type: str
    family: BackendFamily
    features: FrozenSet[Feature]
    concurrency: ConcurrencyClass

    def supports(self, feature: Feature) -> bool:
        return feature in self.features


class PrinterBackend:
    """
    Base class of all protocol backends. One instance belongs to exactly one
    printer context.

    Public operations check the feature set first, then run the variant's
    ``_do_*`` hook bounded by ``command_timeout``. Client failures are mapped to
    the package errors:

    - OSError from the client => DeviceConnectionError
    - timeout or a negative acknowledgement => ExecutionFailedError

    Args:
        details: Printer connection details
        command_timeout: Upper bound in seconds for one device operation
    """

    CAPABILITIES: ClassVar[BackendCapabilities]

    def __init__(self, details: PrinterDetails, command_timeout: float = 10.0):
        self.details = details
        self.command_timeout = command_timeout
        features = set(self.CAPABILITIES.features)
        if details.custom_camera_url:
            features.add(Feature.CAMERA)
        self._features: FrozenSet[Feature] = frozenset(features)
        self._initialized = False
        self._disposed = False

    @property
    def printer_name(self) -> str:
        return self.details.name

    @property
    def model_type(self) -> str:
        return self.CAPABILITIES.model_type

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def disposed(self) -> bool:
        return self._disposed

    def get_capabilities(self) -> BackendCapabilities:
        """Capabilities of this instance, after initialize() has narrowed them."""
        return dataclasses.replace(self.CAPABILITIES, features=self._features)

    def supports(self, feature: Feature) -> bool:
        return feature in self._features

    def require(self, feature: Feature, operation: str) -> None:
        if feature not in self._features:
            raise UnsupportedOperationError(operation, self.model_type)

    ###########################################################################
    # Lifecycle
    ###########################################################################
    async def initialize(self) -> None:
        """Verify the printer answers and detect optional hardware."""
        if self._initialized:
            return
        await self._do_initialize()
        self._initialized = True
        logger.info("[%s] %s backend initialized, features: %s", self.printer_name,
                    self.model_type, ", ".join(sorted(f.value for f in self._features)))

    async def dispose(self) -> None:
        """Release the clients. Errors are logged, never raised."""
        if self._disposed:
            return
        self._disposed = True
        for client in self._clients():
            try:
                await client.dispose()
            except Exception as e:
                logger.error("[%s] Error disposing client: %s", self.printer_name, e)
        logger.debug("[%s] Backend disposed", self.printer_name)

    ###########################################################################
    # Operations
    ###########################################################################
    async def get_status(self) -> PrinterStatus:
        self.require(Feature.STATUS, "get_status")
        return await self._call("get_status", self._do_get_status())

    async def send_command(self, command: str) -> str:
        self.require(Feature.GCODE, "send_command")
        return await self._call("send_command", self._do_send_command(command))

    async def start_job(self, file_name: str, *, leveling: bool = False,
                        material_mappings: Optional[List[Dict[str, Any]]] = None) -> None:
        self.require(Feature.JOB_CONTROL, "start_job")
        if material_mappings:
            self.require(Feature.MATERIAL_STATION, "start_job with material mappings")
        ok = await self._call("start_job", self._do_start_job(file_name, leveling, material_mappings))
        self._check_ack("start_job", ok)

    async def pause_job(self) -> None:
        self.require(Feature.JOB_CONTROL, "pause_job")
        self._check_ack("pause_job", await self._call("pause_job", self._do_pause_job()))

    async def resume_job(self) -> None:
        self.require(Feature.JOB_CONTROL, "resume_job")
        self._check_ack("resume_job", await self._call("resume_job", self._do_resume_job()))

    async def cancel_job(self) -> None:
        self.require(Feature.JOB_CONTROL, "cancel_job")
        self._check_ack("cancel_job", await self._call("cancel_job", self._do_cancel_job()))

    async def list_local_jobs(self) -> List[str]:
        self.require(Feature.LOCAL_JOBS, "list_local_jobs")
        return await self._call("list_local_jobs", self._do_list_local_jobs())

    async def list_recent_jobs(self) -> List[str]:
        self.require(Feature.RECENT_JOBS, "list_recent_jobs")
        return await self._call("list_recent_jobs", self._do_list_recent_jobs())

    async def get_job_thumbnail(self, file_name: str) -> Optional[bytes]:
        self.require(Feature.THUMBNAILS, "get_job_thumbnail")
        return await self._call("get_job_thumbnail", self._do_get_job_thumbnail(file_name))

    async def get_model_preview(self) -> Optional[bytes]:
        self.require(Feature.MODEL_PREVIEW, "get_model_preview")
        return await self._call("get_model_preview", self._do_get_model_preview())

    async def set_led(self, on: bool) -> None:
        self.require(Feature.LED_CONTROL, "set_led")
        self._check_ack("set_led", await self._call("set_led", self._do_set_led(on)))

    async def set_filtration(self, mode: str) -> None:
        """``mode`` is "internal", "external" or "none"."""
        self.require(Feature.FILTRATION, "set_filtration")
        if mode not in ("internal", "external", "none"):
            raise ValueError(f"Unknown filtration mode: {mode}")
        ok = await self._call("set_filtration", self._do_set_filtration(mode))
        self._check_ack("set_filtration", ok)

    async def query_material_slots(self) -> MaterialStationStatus:
        self.require(Feature.MATERIAL_STATION, "query_material_slots")
        return await self._call("query_material_slots", self._do_query_material_slots())

    ###########################################################################
    # Helpers
    ###########################################################################
    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.command_timeout)
        except asyncio.TimeoutError:
            raise ExecutionFailedError(
                f"[{self.printer_name}] {operation} timed out after {self.command_timeout}s"
            ) from None
        except PrinterContextError:
            raise
        except OSError as e:
            raise DeviceConnectionError(f"[{self.printer_name}] {operation} failed: {e}") from e

    def _check_ack(self, operation: str, ok: Any) -> None:
        if not ok:
            raise ExecutionFailedError(f"[{self.printer_name}] Printer rejected {operation}")

    def _clients(self) -> list:
        return []

    # Variant hooks. Only hooks for advertised features are ever reached.
    async def _do_initialize(self) -> None:
        pass

    async def _do_get_status(self) -> PrinterStatus:
        raise UnsupportedOperationError("get_status", self.model_type)

    async def _do_send_command(self, command: str) -> str:
        raise UnsupportedOperationError("send_command", self.model_type)

    async def _do_start_job(self, file_name, leveling, material_mappings) -> bool:
        raise UnsupportedOperationError("start_job", self.model_type)

    async def _do_pause_job(self) -> bool:
        raise UnsupportedOperationError("pause_job", self.model_type)

    async def _do_resume_job(self) -> bool:
        raise UnsupportedOperationError("resume_job", self.model_type)

    async def _do_cancel_job(self) -> bool:
        raise UnsupportedOperationError("cancel_job", self.model_type)

    async def _do_list_local_jobs(self) -> List[str]:
        raise UnsupportedOperationError("list_local_jobs", self.model_type)

    async def _do_list_recent_jobs(self) -> List[str]:
        raise UnsupportedOperationError("list_recent_jobs", self.model_type)

    async def _do_get_job_thumbnail(self, file_name: str) -> Optional[bytes]:
        raise UnsupportedOperationError("get_job_thumbnail", self.model_type)

    async def _do_get_model_preview(self) -> Optional[bytes]:
        raise UnsupportedOperationError("get_model_preview", self.model_type)

    async def _do_set_led(self, on: bool) -> bool:
        raise UnsupportedOperationError("set_led", self.model_type)

    async def _do_set_filtration(self, mode: str) -> bool:
        raise UnsupportedOperationError("set_filtration", self.model_type)

    async def _do_query_material_slots(self) -> MaterialStationStatus:
        raise UnsupportedOperationError("query_material_slots", self.model_type)

    def __repr__(self):
        return f"<{type(self).__name__} {self.printer_name} ({self.details.ip_address})>"
