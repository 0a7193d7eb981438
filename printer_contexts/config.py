# printer_contexts/config.py

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoordinatorConfig:
    """
    Immutable settings shared by every coordination component.

    Attributes:
        active_poll_interval: Seconds between status polls of the active context
        inactive_poll_interval: Seconds between status polls of background contexts
        poll_max_retries: Extra attempts for a failed status poll before reporting it
        poll_retry_delay: Base delay between poll retries (grows linearly)
        auto_start_polling: Start a polling loop as soon as a context is created
        port_range_start: First camera proxy port (inclusive)
        port_range_end: Last camera proxy port (inclusive)
        legacy_request_concurrency: Concurrent queued requests for single-channel printers
        modern_request_concurrency: Concurrent queued requests for multi-channel printers
        request_max_retries: Extra attempts for a failed queued request
        request_retry_delay: Initial retry delay for queued requests (doubles per attempt)
        max_queue_size: Pending entries allowed per context before QueueOverflowError
        command_timeout: Upper bound for a single device operation
        command_max_retries: Extra attempts for a device operation failing transiently
        command_retry_delay: Initial retry delay for device operations (doubles per attempt)
    """
    active_poll_interval: float = 3.0
    inactive_poll_interval: float = 30.0
    poll_max_retries: int = 3
    poll_retry_delay: float = 2.0
    auto_start_polling: bool = True
    port_range_start: int = 8181
    port_range_end: int = 8191
    legacy_request_concurrency: int = 1
    modern_request_concurrency: int = 3
    request_max_retries: int = 3
    request_retry_delay: float = 0.5
    max_queue_size: int = 256
    command_timeout: float = 10.0
    command_max_retries: int = 2
    command_retry_delay: float = 0.5

    def __post_init__(self):
        if self.active_poll_interval <= 0:
            raise ValueError("active_poll_interval must be positive")
        if self.inactive_poll_interval < self.active_poll_interval:
            raise ValueError("inactive_poll_interval must not be shorter than active_poll_interval")
        if min(self.poll_max_retries, self.request_max_retries, self.command_max_retries) < 0:
            raise ValueError("Retry counts must not be negative")
        if min(self.poll_retry_delay, self.request_retry_delay, self.command_retry_delay) < 0:
            raise ValueError("Retry delays must not be negative")
        if not (1 <= self.port_range_start <= 65535 and 1 <= self.port_range_end <= 65535):
            raise ValueError("Port numbers must be in range 1-65535")
        if self.port_range_start > self.port_range_end:
            raise ValueError(f"Invalid port range: {self.port_range_start}-{self.port_range_end}")
        # Legacy printers share one TCP channel; overlapping requests corrupt it.
        if self.legacy_request_concurrency != 1:
            raise ValueError("legacy_request_concurrency must be 1")
        if self.modern_request_concurrency < 2:
            raise ValueError("modern_request_concurrency must be at least 2")
        if self.max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        if self.command_timeout <= 0:
            raise ValueError("command_timeout must be positive")

    def replace(self, **changes) -> "CoordinatorConfig":
        """Return a copy with the given fields changed (validated again)."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CoordinatorConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)


def load_config(path: Union[str, Path]) -> CoordinatorConfig:
    """
    Load a CoordinatorConfig from a JSON object file.

    Missing keys keep their defaults.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On unknown keys or invalid values
    """
    json_file = Path(path)
    if not json_file.is_file():
        raise FileNotFoundError(f"Configuration file not found: {json_file}")

    logger.debug("Loading coordinator configuration from %s", json_file)
    data = json.loads(json_file.read_text("utf-8-sig"))
    if not isinstance(data, dict):
        raise ValueError(f"Configuration in {json_file} must be a JSON object")
    return CoordinatorConfig.from_dict(data)
