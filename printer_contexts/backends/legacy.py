# printer_contexts/backends/legacy.py

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional

from ..models import PrinterDetails
from ..printer_status import PrinterStatus
from .base import BackendCapabilities, BackendFamily, ConcurrencyClass, Feature, PrinterBackend
from .clients import LegacyClient

logger = logging.getLogger(__name__)

LEGACY_STATES = {
    "READY": "ready",
    "BUILDING_FROM_SD": "printing",
    "BUILDING_COMPLETED": "completed",
    "PAUSED": "paused",
    "BUSY": "busy",
}


def parse_legacy_status(data: Dict[str, Any]) -> PrinterStatus:
    """Normalize a legacy status payload into a PrinterStatus."""
    temps = data.get("temperatures") or {}
    bed = temps.get("bed") or (0.0, 0.0)
    extruder = temps.get("extruder") or (0.0, 0.0)

    progress = 0.0
    done_total = data.get("sd_progress")
    if done_total and done_total[1]:
        progress = round(100.0 * done_total[0] / done_total[1], 1)

    machine_status = str(data.get("machine_status", "")).upper()
    return PrinterStatus(
        state=LEGACY_STATES.get(machine_status, "unknown"),
        bed_temperature=float(bed[0]),
        bed_target=float(bed[1]),
        nozzle_temperature=float(extruder[0]),
        nozzle_target=float(extruder[1]),
        progress=progress,
        job_name=data.get("current_file") or None,
        raw=dict(data),
    )


class GenericLegacyBackend(PrinterBackend):
    """
    Backend for printers that only speak the legacy G-code protocol.

    Everything runs over one TCP channel. Every exchange holds the channel lock
    for its whole duration, so status polls, queued requests and user commands
    are serialized on this backend no matter which component issues them.
    """

    CAPABILITIES = BackendCapabilities(
        model_type="generic-legacy",
        family=BackendFamily.LEGACY,
        features=frozenset({
            Feature.STATUS,
            Feature.GCODE,
            Feature.JOB_CONTROL,
            Feature.LOCAL_JOBS,
            Feature.THUMBNAILS,
            Feature.LED_CONTROL,
        }),
        concurrency=ConcurrencyClass.SINGLE_CHANNEL,
    )

    def __init__(self, details: PrinterDetails, client: LegacyClient, command_timeout: float = 10.0):
        super().__init__(details, command_timeout)
        self.client = client
        self._channel_lock = asyncio.Lock()

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        # The timeout covers the exchange only, not the wait for the channel
        try:
            await self._channel_lock.acquire()
        except asyncio.CancelledError:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise
        try:
            return await super()._call(operation, awaitable)
        finally:
            self._channel_lock.release()

    def _clients(self) -> list:
        return [self.client]

    async def _do_initialize(self) -> None:
        # First status read doubles as the reachability check
        await self._call("initialize", self.client.get_status())

    async def _do_get_status(self) -> PrinterStatus:
        return parse_legacy_status(await self.client.get_status())

    async def _do_send_command(self, command: str) -> str:
        logger.debug("[%s] G-code: %s", self.printer_name, command)
        return await self.client.send_raw_command(command)

    async def _do_start_job(self, file_name, leveling, material_mappings) -> bool:
        if leveling:
            logger.info("[%s] Legacy printers ignore the leveling option", self.printer_name)
        return await self.client.start_job(file_name)

    async def _do_pause_job(self) -> bool:
        return await self.client.pause_job()

    async def _do_resume_job(self) -> bool:
        return await self.client.resume_job()

    async def _do_cancel_job(self) -> bool:
        return await self.client.stop_job()

    async def _do_list_local_jobs(self) -> List[str]:
        return list(await self.client.list_local_files())

    async def _do_get_job_thumbnail(self, file_name: str) -> Optional[bytes]:
        return await self.client.get_thumbnail(file_name)

    async def _do_set_led(self, on: bool) -> bool:
        return await self.client.set_led(on)
