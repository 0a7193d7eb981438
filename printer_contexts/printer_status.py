# printer_status.py
from dataclasses import dataclass, field
import time
from typing import Dict, Any, List, Optional

@dataclass
class PrinterStatus:
    """
    Represents a snapshot of printer status at a point in time.

    Attributes:
        state: Normalized machine state (e.g. "ready", "printing", "paused")
        bed_temperature / bed_target: Current and target bed temperature
        nozzle_temperature / nozzle_target: Current and target extruder temperature
        progress: Job progress 0-100
        current_layer / total_layers: Layer counters when reported
        job_name: File name of the current job, if any
        raw: Unmodified payload returned by the printer client
        timestamp: When this status was received

    Methods:
        age(): How old this status data is
    """
    state: str = "unknown"
    bed_temperature: float = 0.0
    bed_target: float = 0.0
    nozzle_temperature: float = 0.0
    nozzle_target: float = 0.0
    progress: float = 0.0
    current_layer: Optional[int] = None
    total_layers: Optional[int] = None
    job_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def age(self) -> float:
        """
        Return how many seconds have passed since this status snapshot was created.
        """
        return time.time() - self.timestamp

    @property
    def is_printing(self) -> bool:
        return self.state in ("printing", "paused", "pausing", "heating")

@dataclass
class MaterialSlot:
    """One spool slot of a material station."""
    slot_id: int
    material_type: Optional[str] = None
    color: Optional[str] = None
    is_empty: bool = True

@dataclass
class MaterialStationStatus:
    """Material station snapshot for multi-material printers."""
    connected: bool = False
    slots: List[MaterialSlot] = field(default_factory=list)
    active_slot: Optional[int] = None
    timestamp: float = field(default_factory=time.time)
