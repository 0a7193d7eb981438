# printer_contexts/ports.py

import logging
from typing import Dict, List, Set

from .errors import ResourceExhaustedError

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    Hands out camera proxy ports from a fixed inclusive range.

    Allocation is sequential with a rotating cursor: each call returns the first
    free port at or after the port following the last allocation, wrapping
    around to the start of the range once. A released port is immediately
    free again and is handed out when the cursor reaches it.

    Args:
        start_port: First port of the range
        end_port: Last port of the range
    """

    def __init__(self, start_port: int, end_port: int):
        if not (1 <= start_port <= 65535 and 1 <= end_port <= 65535):
            raise ValueError("Port numbers must be in range 1-65535")
        if start_port > end_port:
            raise ValueError(f"Invalid port range: {start_port}-{end_port}")
        self.start_port = start_port
        self.end_port = end_port
        self._allocated: Set[int] = set()
        self._next_port = start_port

    @property
    def total_ports(self) -> int:
        return self.end_port - self.start_port + 1

    def allocate(self) -> int:
        """
        Reserve the next free port.

        Raises:
            ResourceExhaustedError: If every port in the range is in use
        """
        for offset in range(self.total_ports):
            port = self.start_port + (self._next_port - self.start_port + offset) % self.total_ports
            if port not in self._allocated:
                self._allocated.add(port)
                self._next_port = port + 1 if port < self.end_port else self.start_port
                logger.debug("Allocated port %d (%d/%d in use)", port, len(self._allocated), self.total_ports)
                return port
        raise ResourceExhaustedError(f"No available ports in range {self.start_port}-{self.end_port}")

    def release(self, port: int) -> bool:
        """Return a port to the free set. Returns False if it was not allocated."""
        if port not in self._allocated:
            logger.debug("Port %d was not allocated", port)
            return False
        self._allocated.discard(port)
        logger.debug("Released port %d", port)
        return True

    def is_allocated(self, port: int) -> bool:
        return port in self._allocated

    @property
    def allocated_count(self) -> int:
        return len(self._allocated)

    @property
    def available_count(self) -> int:
        return self.total_ports - len(self._allocated)

    def allocated_ports(self) -> List[int]:
        return sorted(self._allocated)

    def reset(self) -> None:
        """Release every port and restart allocation at the beginning of the range."""
        self._allocated.clear()
        self._next_port = self.start_port

    def info(self) -> Dict[str, object]:
        return {
            "start_port": self.start_port,
            "end_port": self.end_port,
            "total_ports": self.total_ports,
            "allocated_count": self.allocated_count,
            "available_count": self.available_count,
            "allocated_ports": self.allocated_ports(),
        }
