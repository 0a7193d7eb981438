# printer_contexts/backends/ad5x.py

import logging
from typing import Any, Dict, Optional

from ..printer_status import MaterialSlot, MaterialStationStatus
from .base import BackendCapabilities, BackendFamily, ConcurrencyClass, Feature
from .dual_api import MODERN_FEATURES, DualAPIBackend

logger = logging.getLogger(__name__)


def parse_material_station(data: Optional[Dict[str, Any]]) -> MaterialStationStatus:
    """Normalize the material station payload. A missing payload means no station attached."""
    if not data:
        return MaterialStationStatus(connected=False)

    slots = []
    for entry in data.get("slots") or []:
        has_filament = bool(entry.get("hasFilament"))
        slots.append(MaterialSlot(
            slot_id=int(entry.get("slotId", len(slots) + 1)),
            material_type=entry.get("materialName") or None,
            color=entry.get("materialColor") or None,
            is_empty=not has_filament,
        ))
    current = data.get("currentSlot")
    return MaterialStationStatus(
        connected=bool(data.get("connected", True)),
        slots=slots,
        active_slot=int(current) if current is not None else None,
    )


class AD5XBackend(DualAPIBackend):
    """
    AD5X multi-material printer.

    Same HTTP API as the 5M family, without a built-in camera, plus the
    material station: slot queries and jobs started with slot mappings.
    LED control is never auto-detected on this model.
    """

    CAPABILITIES = BackendCapabilities(
        model_type="ad5x",
        family=BackendFamily.MULTI_MATERIAL,
        features=MODERN_FEATURES | {Feature.MATERIAL_STATION},
        concurrency=ConcurrencyClass.MULTI_CHANNEL,
    )

    def _narrow_features(self, product: Dict[str, Any]) -> frozenset:
        # Keep the declared LED setting regardless of lightCtrlState
        led = Feature.LED_CONTROL in self._features
        features = set(super()._narrow_features(product))
        if led:
            features.add(Feature.LED_CONTROL)
        return frozenset(features)

    async def _do_start_job(self, file_name, leveling, material_mappings) -> bool:
        if material_mappings:
            logger.info("[%s] Starting %s with %d material mapping(s)", self.printer_name,
                        file_name, len(material_mappings))
            return await self.http.start_job(file_name, leveling=leveling,
                                             material_mappings=list(material_mappings))
        return await self.http.start_job(file_name, leveling=leveling)

    async def _do_query_material_slots(self) -> MaterialStationStatus:
        return parse_material_station(await self.http.get_material_station())
