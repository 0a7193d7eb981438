# printer_contexts/backends/__init__.py

from .base import (
    BackendCapabilities,
    BackendFamily,
    ConcurrencyClass,
    Feature,
    PrinterBackend,
)
from .legacy import GenericLegacyBackend
from .dual_api import DualAPIBackend, Adventurer5MBackend, Adventurer5MProBackend
from .ad5x import AD5XBackend

__all__ = [
    "BackendCapabilities",
    "BackendFamily",
    "ConcurrencyClass",
    "Feature",
    "PrinterBackend",
    "GenericLegacyBackend",
    "DualAPIBackend",
    "Adventurer5MBackend",
    "Adventurer5MProBackend",
    "AD5XBackend",
]
