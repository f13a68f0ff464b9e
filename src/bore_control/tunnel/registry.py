"""Runtime registry mapping entity IDs to running tunnel tasks."""

import logging
import threading

from ..common.exceptions import AlreadyRunningError, NotRunningError, TunnelError
from .models import RuntimeHandle

logger = logging.getLogger(__name__)


class RuntimeRegistry:
    """Thread-safe store of runtime handles with at most one handle per ID.

    Every check-then-mutate happens under a single lock, so two concurrent
    starts of the same ID can never both succeed. The lock is never held
    across an ``await``.

    A start in flight first *reserves* its ID. Reservations make a second
    start fail fast, but are otherwise invisible: ``get``, ``remove`` and
    ``list_finished`` only see fully built handles.

    Once closed, the registry refuses new reservations and handles, so a start
    still in its handshake when the process shuts down cannot publish.
    """

    def __init__(self, label: str = "Entity") -> None:
        self.label = label
        self._handles: dict[int, RuntimeHandle] = {}
        self._reserved: set[int] = set()
        self._lock = threading.Lock()
        self._closed = False

    def reserve(self, entity_id: int) -> None:
        """Claim ``entity_id`` for a start in progress.

        Raises:
            AlreadyRunningError: If the ID has a handle or is already reserved
            TunnelError: If the registry has been closed
        """
        with self._lock:
            self._check_open(entity_id)
            if entity_id in self._handles or entity_id in self._reserved:
                raise AlreadyRunningError(f"{self.label} {entity_id} is already running")
            self._reserved.add(entity_id)

    def _check_open(self, entity_id: int) -> None:
        if self._closed:
            raise TunnelError(f"{self.label} {entity_id} cannot start: shutting down")

    def release(self, entity_id: int) -> None:
        """Drop a reservation without inserting a handle."""
        with self._lock:
            self._reserved.discard(entity_id)

    def insert(self, entity_id: int, handle: RuntimeHandle) -> None:
        """Publish a handle, consuming any reservation for the same ID.

        Raises:
            AlreadyRunningError: If a handle for the ID already exists
            TunnelError: If the registry has been closed
        """
        with self._lock:
            self._check_open(entity_id)
            if entity_id in self._handles:
                raise AlreadyRunningError(f"{self.label} {entity_id} is already running")
            self._reserved.discard(entity_id)
            self._handles[entity_id] = handle
        logger.debug(f"Registered handle for {self.label.lower()} {entity_id}")

    def remove(self, entity_id: int) -> RuntimeHandle:
        """Take the handle for ``entity_id`` out of the registry.

        Raises:
            NotRunningError: If no handle is registered
        """
        with self._lock:
            handle = self._handles.pop(entity_id, None)
        if handle is None:
            raise NotRunningError(f"{self.label} {entity_id} is not running")
        logger.debug(f"Removed handle for {self.label.lower()} {entity_id}")
        return handle

    def get(self, entity_id: int) -> RuntimeHandle | None:
        """Get the handle for ``entity_id``, or None."""
        with self._lock:
            return self._handles.get(entity_id)

    def pop_finished(self, entity_id: int) -> RuntimeHandle | None:
        """Remove the handle for ``entity_id`` only if its task has terminated."""
        with self._lock:
            handle = self._handles.get(entity_id)
            if handle is None or not handle.is_finished:
                return None
            del self._handles[entity_id]
        logger.debug(f"Reaped finished handle for {self.label.lower()} {entity_id}")
        return handle

    def list_finished(self) -> list[int]:
        """IDs whose task has terminated but whose handle is still registered."""
        with self._lock:
            return [eid for eid, handle in self._handles.items() if handle.is_finished]

    def ids(self) -> list[int]:
        with self._lock:
            return list(self._handles)

    def drain(self) -> list[RuntimeHandle]:
        """Remove and return every handle."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
            self._reserved.clear()
        if handles:
            logger.info(f"Drained {len(handles)} {self.label.lower()} handles")
        return handles

    def close(self) -> list[RuntimeHandle]:
        """Refuse further starts, then remove and return every handle."""
        with self._lock:
            self._closed = True
        return self.drain()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __contains__(self, entity_id: object) -> bool:
        with self._lock:
            return entity_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
