"""
Interfaces of the wire-level clients a backend drives.

The protocol implementations live outside this package; the connection flow
hands already constructed clients to ``Runtime.create_context``. Any object
with these coroutine methods works, which is also how the tests inject fakes.
"""

from typing import Any, Dict, List, Optional, Protocol


class LegacyClient(Protocol):
    """Single shared TCP channel speaking the G-code based legacy protocol."""

    async def get_status(self) -> Dict[str, Any]:
        """
        Returns a dict with ``machine_status`` (READY, BUILDING_FROM_SD,
        BUILDING_COMPLETED, PAUSED, BUSY), ``temperatures``
        (``{"bed": (current, target), "extruder": (current, target)}``),
        ``sd_progress`` (``(bytes_done, bytes_total)``) and ``current_file``.
        """
        ...

    async def send_raw_command(self, command: str) -> str:
        ...

    async def start_job(self, file_name: str) -> bool:
        ...

    async def pause_job(self) -> bool:
        ...

    async def resume_job(self) -> bool:
        ...

    async def stop_job(self) -> bool:
        ...

    async def list_local_files(self) -> List[str]:
        ...

    async def get_thumbnail(self, file_name: str) -> Optional[bytes]:
        ...

    async def set_led(self, on: bool) -> bool:
        ...

    async def dispose(self) -> None:
        ...


class HttpClient(Protocol):
    """HTTP API of the modern (5M family) printers."""

    async def get_status(self) -> Dict[str, Any]:
        """
        Returns the printer detail payload: ``status``, ``platTemp``,
        ``platTargetTemp``, ``rightTemp``, ``rightTargetTemp``,
        ``printProgress`` (0.0-1.0), ``printLayer``, ``targetPrintLayer``
        and ``printFileName``.
        """
        ...

    async def get_product_info(self) -> Dict[str, Any]:
        """Returns ``lightCtrlState``, ``internalFanCtrlState`` and ``externalFanCtrlState``."""
        ...

    async def job_control(self, action: str) -> bool:
        """``action`` is one of "pause", "continue" or "cancel"."""
        ...

    async def start_job(self, file_name: str, leveling: bool = False,
                        material_mappings: Optional[List[Dict[str, Any]]] = None) -> bool:
        ...

    async def list_local_jobs(self) -> List[str]:
        ...

    async def list_recent_jobs(self) -> List[str]:
        ...

    async def get_thumbnail(self, file_name: str) -> Optional[bytes]:
        ...

    async def get_model_preview(self) -> Optional[bytes]:
        ...

    async def set_led(self, on: bool) -> bool:
        ...

    async def set_filtration(self, internal: bool, external: bool) -> bool:
        ...

    async def get_material_station(self) -> Optional[Dict[str, Any]]:
        """
        Returns ``{"connected": bool, "currentSlot": int | None, "slots":
        [{"slotId", "materialName", "materialColor", "hasFilament"}]}``.
        """
        ...

    async def dispose(self) -> None:
        ...
