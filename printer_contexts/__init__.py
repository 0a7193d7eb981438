# printer_contexts/__init__.py

from .backends import BackendCapabilities, BackendFamily, ConcurrencyClass, Feature, PrinterBackend
from .config import CoordinatorConfig, load_config
from .context_manager import ContextManager, PrinterContext
from .dispatcher import BackendDispatcher, detect_model_type
from .errors import (
    PrinterContextError,
    DeviceConnectionError,
    ExecutionFailedError,
    UnsupportedOperationError,
    ResourceExhaustedError,
    QueueOverflowError,
    DuplicateDeviceError,
    ContextNotFoundError,
    BackendInitializationError,
)
from .models import ContextInfo, PrinterDetails
from .polling import PollingCoordinator, PollingState
from .ports import PortAllocator
from .printer_status import MaterialSlot, MaterialStationStatus, PrinterStatus
from .request_queue import Outcome, RequestQueue, RequestResult
from .runtime import Runtime, build_runtime, dispose_runtime, get_runtime, init_runtime

__all__ = [
    "BackendCapabilities",
    "BackendFamily",
    "ConcurrencyClass",
    "Feature",
    "PrinterBackend",
    "CoordinatorConfig",
    "load_config",
    "ContextManager",
    "PrinterContext",
    "BackendDispatcher",
    "detect_model_type",
    "PrinterContextError",
    "DeviceConnectionError",
    "ExecutionFailedError",
    "UnsupportedOperationError",
    "ResourceExhaustedError",
    "QueueOverflowError",
    "DuplicateDeviceError",
    "ContextNotFoundError",
    "BackendInitializationError",
    "ContextInfo",
    "PrinterDetails",
    "PollingCoordinator",
    "PollingState",
    "PortAllocator",
    "MaterialSlot",
    "MaterialStationStatus",
    "PrinterStatus",
    "Outcome",
    "RequestQueue",
    "RequestResult",
    "Runtime",
    "build_runtime",
    "dispose_runtime",
    "get_runtime",
    "init_runtime",
]
