import logging
from typing import Dict, Iterable, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Directory of realtime WebSocket connections.
    Each connection joins one or more named groups (`admins`, `user-12`,
    `doctor-3`, ...) and events are broadcast per group.
    """

    def __init__(self):
        # group -> set of websockets
        self.groups: Dict[str, Set[WebSocket]] = {}
        # websocket -> groups it joined
        self.memberships: Dict[WebSocket, Set[str]] = {}

    async def connect(self, websocket: WebSocket, groups: Iterable[str]):
        await websocket.accept()
        self.join(websocket, groups)

    def join(self, websocket: WebSocket, groups: Iterable[str]):
        for group in groups:
            self.groups.setdefault(group, set()).add(websocket)
            self.memberships.setdefault(websocket, set()).add(group)

    def disconnect(self, websocket: WebSocket):
        for group in self.memberships.pop(websocket, set()):
            conns = self.groups.get(group)
            if conns and websocket in conns:
                conns.remove(websocket)
                if not conns:
                    del self.groups[group]

    def members(self, group: str) -> List[WebSocket]:
        return list(self.groups.get(group, ()))

    async def broadcast_to_group(self, group: str, message: dict) -> int:
        delivered = 0
        for connection in self.members(group):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                # Broken pipe or closed connection
                logger.warning(f"Dropping connection in group {group}: {e}")
                self.disconnect(connection)
        return delivered


manager = ConnectionManager()
