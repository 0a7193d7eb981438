# printer_contexts/errors.py

class PrinterContextError(Exception):
    """Base exception class for all multi-printer coordination errors."""

class DeviceConnectionError(PrinterContextError):
    """Raised when the printer cannot be reached at all."""

class ExecutionFailedError(PrinterContextError):
    """Raised when a reachable printer rejected or timed out a supported operation."""

class UnsupportedOperationError(PrinterContextError):
    """
    Raised when the backend of a context lacks the capability for an operation.
    Never retried.
    """

    def __init__(self, operation: str, model_type: str = ""):
        self.operation = operation
        self.model_type = model_type
        if model_type:
            super().__init__(f"Operation '{operation}' is not supported by {model_type} printers")
        else:
            super().__init__(f"Unknown operation '{operation}'")

class ResourceExhaustedError(PrinterContextError):
    """Raised when no camera proxy ports are left in the configured range."""

class QueueOverflowError(PrinterContextError):
    """Raised when a context's request queue is already holding its maximum number of entries."""

class DuplicateDeviceError(PrinterContextError):
    """Raised when a context for the same physical printer already exists."""

    def __init__(self, identity: str, context_id: str):
        self.identity = identity
        self.context_id = context_id
        super().__init__(f"Printer {identity} is already connected as {context_id}")

class ContextNotFoundError(PrinterContextError):
    """Raised when an operation names a context that does not exist."""

    def __init__(self, context_id):
        self.context_id = context_id
        super().__init__(f"Context {context_id} does not exist")

class BackendInitializationError(PrinterContextError):
    """Raised when a backend could not be built or failed its initial handshake."""

# Failures worth retrying locally before they are surfaced
TRANSIENT_ERRORS = (DeviceConnectionError, ExecutionFailedError)
