from dataclasses import dataclass, asdict
from typing import Literal, Optional, Dict, Any

ConnectionState = Literal["connecting", "connected", "disconnected", "error"]

ModelType = Literal["generic-legacy", "adventurer-5m", "adventurer-5m-pro", "ad5x"]


@dataclass(frozen=True)
class PrinterDetails:
    """Connection details supplied by the connection flow for one printer"""
    name: str
    ip_address: str
    type_name: str = ""
    serial_number: Optional[str] = None
    check_code: Optional[str] = None
    force_legacy_api: bool = False
    custom_camera_url: Optional[str] = None

    @property
    def identity(self) -> str:
        """Key of the physical device: serial number when known, else IP address."""
        if self.serial_number and self.serial_number.strip():
            return self.serial_number.strip()
        return self.ip_address


@dataclass(frozen=True)
class ContextInfo:
    """Serializable view of a printer context, safe to hand to UI collaborators"""
    id: str
    name: str
    ip: str
    model: str
    serial_number: Optional[str]
    status: ConnectionState
    is_active: bool
    has_camera: bool
    camera_url: Optional[str]
    created_at: float
    last_activity: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
