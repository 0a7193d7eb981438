# printer_contexts/backends/dual_api.py

import logging
from typing import Any, Dict, List, Optional

from ..errors import PrinterContextError
from ..models import PrinterDetails
from ..printer_status import PrinterStatus
from .base import BackendCapabilities, BackendFamily, ConcurrencyClass, Feature, PrinterBackend
from .clients import HttpClient, LegacyClient

logger = logging.getLogger(__name__)

HTTP_STATES = {
    "ready": "ready",
    "printing": "printing",
    "paused": "paused",
    "pausing": "pausing",
    "completed": "completed",
    "error": "error",
    "busy": "busy",
    "heating": "heating",
    "calibrate_doing": "calibrating",
    "cancel": "cancelled",
}

FILTRATION_MODES = {
    "internal": (True, False),
    "external": (False, True),
    "none": (False, False),
}

MODERN_FEATURES = frozenset({
    Feature.STATUS,
    Feature.GCODE,
    Feature.JOB_CONTROL,
    Feature.LOCAL_JOBS,
    Feature.RECENT_JOBS,
    Feature.THUMBNAILS,
    Feature.MODEL_PREVIEW,
    Feature.LED_CONTROL,
})


def parse_http_status(data: Dict[str, Any]) -> PrinterStatus:
    """Normalize an HTTP printer detail payload into a PrinterStatus."""
    progress = float(data.get("printProgress") or 0.0)
    return PrinterStatus(
        state=HTTP_STATES.get(str(data.get("status", "")).lower(), "unknown"),
        bed_temperature=float(data.get("platTemp") or 0.0),
        bed_target=float(data.get("platTargetTemp") or 0.0),
        nozzle_temperature=float(data.get("rightTemp") or 0.0),
        nozzle_target=float(data.get("rightTargetTemp") or 0.0),
        progress=round(progress * 100.0, 1) if progress <= 1.0 else progress,
        current_layer=data.get("printLayer"),
        total_layers=data.get("targetPrintLayer"),
        job_name=data.get("printFileName") or None,
        raw=dict(data),
    )


class DualAPIBackend(PrinterBackend):
    """
    Base for the 5M family, which speaks the HTTP API and keeps a legacy TCP
    client for raw G-code.

    On initialize() the product endpoint is read; LED and filtration features
    are dropped when the hardware reports no control for them. A failed
    product read keeps the variant defaults.

    Args:
        details: Printer connection details
        http_client: Modern HTTP API client (primary)
        legacy_client: Legacy TCP client (secondary)
    """

    # Hardware-detected features are only narrowed, never added.
    DETECTED_FEATURES = frozenset({Feature.LED_CONTROL, Feature.FILTRATION})

    def __init__(self, details: PrinterDetails, http_client: HttpClient, legacy_client: LegacyClient,
                 command_timeout: float = 10.0):
        super().__init__(details, command_timeout)
        self.http = http_client
        self.legacy = legacy_client
        self.product_info: Optional[Dict[str, Any]] = None

    def _clients(self) -> list:
        return [self.http, self.legacy]

    async def _do_initialize(self) -> None:
        await self._call("initialize", self.http.get_status())
        try:
            self.product_info = await self._call("get_product_info", self.http.get_product_info())
        except PrinterContextError as e:
            logger.warning("[%s] Product info unavailable, using default features: %s",
                           self.printer_name, e)
            return
        self._features = self._narrow_features(self.product_info or {})

    def _narrow_features(self, product: Dict[str, Any]) -> frozenset:
        features = set(self._features)
        if Feature.LED_CONTROL in features and not product.get("lightCtrlState", 0):
            features.discard(Feature.LED_CONTROL)
        has_filtration = bool(product.get("internalFanCtrlState", 0) or product.get("externalFanCtrlState", 0))
        if Feature.FILTRATION in features and not has_filtration:
            features.discard(Feature.FILTRATION)
        logger.debug("[%s] LED control: %s, filtration: %s", self.printer_name,
                     Feature.LED_CONTROL in features, Feature.FILTRATION in features)
        return frozenset(features)

    async def _do_get_status(self) -> PrinterStatus:
        return parse_http_status(await self.http.get_status())

    async def _do_send_command(self, command: str) -> str:
        # G-code always goes over the legacy channel
        logger.debug("[%s] G-code: %s", self.printer_name, command)
        return await self.legacy.send_raw_command(command)

    async def _do_start_job(self, file_name, leveling, material_mappings) -> bool:
        return await self.http.start_job(file_name, leveling=leveling)

    async def _do_pause_job(self) -> bool:
        return await self.http.job_control("pause")

    async def _do_resume_job(self) -> bool:
        return await self.http.job_control("continue")

    async def _do_cancel_job(self) -> bool:
        return await self.http.job_control("cancel")

    async def _do_list_local_jobs(self) -> List[str]:
        return list(await self.http.list_local_jobs())

    async def _do_list_recent_jobs(self) -> List[str]:
        return list(await self.http.list_recent_jobs())

    async def _do_get_job_thumbnail(self, file_name: str) -> Optional[bytes]:
        return await self.http.get_thumbnail(file_name)

    async def _do_get_model_preview(self) -> Optional[bytes]:
        return await self.http.get_model_preview()

    async def _do_set_led(self, on: bool) -> bool:
        return await self.http.set_led(on)

    async def _do_set_filtration(self, mode: str) -> bool:
        internal, external = FILTRATION_MODES[mode]
        return await self.http.set_filtration(internal, external)


class Adventurer5MBackend(DualAPIBackend):
    CAPABILITIES = BackendCapabilities(
        model_type="adventurer-5m",
        family=BackendFamily.DUAL_API,
        features=MODERN_FEATURES | {Feature.CAMERA},
        concurrency=ConcurrencyClass.MULTI_CHANNEL,
    )


class Adventurer5MProBackend(DualAPIBackend):
    """Adventurer 5M Pro: the 5M feature set plus filtration fans."""

    CAPABILITIES = BackendCapabilities(
        model_type="adventurer-5m-pro",
        family=BackendFamily.DUAL_API,
        features=MODERN_FEATURES | {Feature.CAMERA, Feature.FILTRATION},
        concurrency=ConcurrencyClass.MULTI_CHANNEL,
    )
