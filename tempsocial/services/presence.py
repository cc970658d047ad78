"""In-memory presence registry: identity id -> live connection"""

import logging
import threading
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A live client channel the relay can push events into"""

    @property
    def connection_id(self) -> str:
        ...

    async def emit(self, event: str, data: Any = None) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class PresenceRegistry:
    """Maps each identity to at most one connection (last registration wins).

    Every operation is synchronous and runs under a single lock, so a reader
    never observes a half-applied update. Not shared across processes.
    """

    def __init__(self):
        self._connections: dict[uuid.UUID, Connection] = {}
        self._lock = threading.Lock()

    def register(self, identity_id: uuid.UUID, connection: Connection) -> Connection | None:
        """Bind the identity to connection, returning the evicted connection if any"""
        with self._lock:
            previous = self._connections.get(identity_id)
            self._connections[identity_id] = connection

        if previous is not None and previous is not connection:
            logger.info(
                f"Identity {identity_id} re-registered; evicting connection {previous.connection_id}"
            )
            return previous
        return None

    def lookup(self, identity_id: uuid.UUID) -> Connection | None:
        with self._lock:
            return self._connections.get(identity_id)

    def remove(self, identity_id: uuid.UUID, connection: Connection | None = None) -> bool:
        """Drop the entry. With a connection given, only drop it if it is still the bound one."""
        with self._lock:
            current = self._connections.get(identity_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._connections[identity_id]
            return True

    def snapshot(self) -> dict[uuid.UUID, Connection]:
        with self._lock:
            return dict(self._connections)

    def is_present(self, identity_id: uuid.UUID) -> bool:
        return self.lookup(identity_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
