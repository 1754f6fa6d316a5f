import logging
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Registry of open incident-notification sockets.

    Admin sockets receive every incident event; other sockets only receive
    events for incidents their user owns.
    """

    def __init__(self):
        self.user_connections: Dict[str, List[WebSocket]] = {}
        self.admin_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket, user_id: str, is_admin: bool):
        await websocket.accept()
        if is_admin:
            self.admin_connections.append(websocket)
        else:
            self.user_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, user_id: str):
        if websocket in self.admin_connections:
            self.admin_connections.remove(websocket)
        sockets = self.user_connections.get(user_id)
        if sockets and websocket in sockets:
            sockets.remove(websocket)
            if not sockets:
                del self.user_connections[user_id]

    async def broadcast_to_admins(self, message: dict):
        for connection in list(self.admin_connections):
            await self._send(connection, message)

    async def send_to_user(self, user_id: str, message: dict) -> bool:
        sockets = self.user_connections.get(user_id, [])
        for connection in list(sockets):
            await self._send(connection, message)
        return bool(sockets)

    async def dispatch_incident_event(self, event: dict):
        await self.broadcast_to_admins(event)
        owner_id = event.get("userId")
        if owner_id:
            await self.send_to_user(owner_id, event)

    async def _send(self, websocket: WebSocket, message: dict):
        try:
            await websocket.send_json(message)
        except Exception:
            # a dead socket must not stop delivery to the others
            logger.warning("Dropping websocket after failed send", exc_info=True)
            for user_id, sockets in list(self.user_connections.items()):
                if websocket in sockets:
                    self.disconnect(websocket, user_id)
            if websocket in self.admin_connections:
                self.admin_connections.remove(websocket)
