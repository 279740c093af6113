from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionRegistry:
    """Identity -> live connection handles, owned by the running app.

    Handshakes and disconnects arrive on independent tasks, so every mutation
    goes through one lock. Readers get snapshots, never the live sets.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[Connection]] = {}
        self._lock = asyncio.Lock()

    async def register(self, identity_id: str, connection: Connection) -> int:
        async with self._lock:
            handles = self._connections.setdefault(identity_id, set())
            handles.add(connection)
            count = len(handles)
        logger.info("realtime_registered user_id=%s connections=%s", identity_id, count)
        return count

    async def unregister(self, identity_id: str, connection: Connection) -> None:
        async with self._lock:
            handles = self._connections.get(identity_id)
            if handles is None:
                return
            handles.discard(connection)
            if not handles:
                # Drop empty sets so departed identities do not accumulate.
                del self._connections[identity_id]
        logger.info("realtime_unregistered user_id=%s", identity_id)

    async def connections_for(self, identity_id: str) -> list[Connection]:
        async with self._lock:
            return list(self._connections.get(identity_id, ()))

    def connection_count(self, identity_id: str | None = None) -> int:
        if identity_id is not None:
            return len(self._connections.get(identity_id, ()))
        return sum(len(handles) for handles in self._connections.values())

    async def clear(self) -> None:
        async with self._lock:
            self._connections.clear()
