# printer_contexts/dispatcher.py

import logging
from typing import Any, Dict, Optional, Type

from .backends import (
    AD5XBackend,
    Adventurer5MBackend,
    Adventurer5MProBackend,
    BackendCapabilities,
    BackendFamily,
    Feature,
    GenericLegacyBackend,
    PrinterBackend,
)
from .errors import BackendInitializationError, UnsupportedOperationError
from .models import PrinterDetails

logger = logging.getLogger(__name__)

BACKEND_REGISTRY: Dict[str, Type[PrinterBackend]] = {
    cls.CAPABILITIES.model_type: cls
    for cls in (GenericLegacyBackend, Adventurer5MBackend, Adventurer5MProBackend, AD5XBackend)
}

# operation name => feature the backend must advertise
ROUTES: Dict[str, Feature] = {
    "get_status": Feature.STATUS,
    "send_command": Feature.GCODE,
    "start_job": Feature.JOB_CONTROL,
    "pause_job": Feature.JOB_CONTROL,
    "resume_job": Feature.JOB_CONTROL,
    "cancel_job": Feature.JOB_CONTROL,
    "list_local_jobs": Feature.LOCAL_JOBS,
    "list_recent_jobs": Feature.RECENT_JOBS,
    "get_job_thumbnail": Feature.THUMBNAILS,
    "get_model_preview": Feature.MODEL_PREVIEW,
    "set_led": Feature.LED_CONTROL,
    "set_filtration": Feature.FILTRATION,
    "query_material_slots": Feature.MATERIAL_STATION,
}

MODEL_DISPLAY_NAMES = {
    "generic-legacy": "Generic Legacy",
    "adventurer-5m": "Adventurer 5M",
    "adventurer-5m-pro": "Adventurer 5M Pro",
    "ad5x": "AD5X",
}


def detect_model_type(type_name: str) -> str:
    """
    Map the model string reported by the printer to a backend model type.
    Checks the most specific names first; unknown printers use the legacy protocol.
    """
    if not type_name:
        return "generic-legacy"
    lowered = type_name.lower()
    if "5m pro" in lowered:
        return "adventurer-5m-pro"
    if "5m" in lowered:
        return "adventurer-5m"
    if "ad5x" in lowered:
        return "ad5x"
    return "generic-legacy"


def get_model_display_name(model_type: str) -> str:
    return MODEL_DISPLAY_NAMES.get(model_type, "Unknown Printer")


class BackendDispatcher:
    """
    Factory and routing table for printer backends.

    Holds no per-device state: every call works only on its arguments.

    Args:
        command_timeout: Timeout handed to every backend it creates
    """

    def __init__(self, command_timeout: float = 10.0):
        self.command_timeout = command_timeout

    def resolve_model_type(self, details: PrinterDetails) -> str:
        if details.force_legacy_api:
            logger.info("[%s] Forced legacy mode, using the legacy backend", details.name)
            return "generic-legacy"
        return detect_model_type(details.type_name)

    def capabilities_for(self, details: PrinterDetails) -> BackendCapabilities:
        """Static capabilities the backend for these details would declare."""
        return BACKEND_REGISTRY[self.resolve_model_type(details)].CAPABILITIES

    def create_backend(self, details: PrinterDetails, primary_client: Any,
                       secondary_client: Optional[Any] = None) -> PrinterBackend:
        """
        Instantiate the backend matching the printer family (not yet initialized).

        For the legacy family the primary client is the legacy TCP client. The
        dual-API families take the HTTP client as primary and require the
        legacy client as secondary.

        Raises:
            BackendInitializationError: If a required client is missing
        """
        if primary_client is None:
            raise BackendInitializationError(f"[{details.name}] No client supplied")

        model_type = self.resolve_model_type(details)
        backend_cls = BACKEND_REGISTRY[model_type]
        family = backend_cls.CAPABILITIES.family
        logger.debug("[%s] Detected %s (%s family)", details.name, get_model_display_name(model_type), family.value)

        if family is BackendFamily.LEGACY:
            # Dual-API printers forced into legacy mode keep only their TCP client
            client = secondary_client if details.force_legacy_api and secondary_client is not None else primary_client
            return backend_cls(details, client, command_timeout=self.command_timeout)

        if secondary_client is None:
            raise BackendInitializationError(
                f"[{details.name}] {get_model_display_name(model_type)} requires a legacy client as secondary client"
            )
        return backend_cls(details, primary_client, secondary_client, command_timeout=self.command_timeout)

    async def route(self, backend: PrinterBackend, operation: str, *args, **kwargs) -> Any:
        """
        Forward a named operation to a backend.

        Raises:
            UnsupportedOperationError: For unknown operations or missing features,
                before anything is sent to the printer
        """
        feature = ROUTES.get(operation)
        if feature is None:
            raise UnsupportedOperationError(operation)
        backend.require(feature, operation)
        return await getattr(backend, operation)(*args, **kwargs)
