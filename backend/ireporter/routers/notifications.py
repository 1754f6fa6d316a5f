import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from ireporter.core.exceptions import Unauthenticated
from ireporter.core.security import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.websocket("/ws/incidents")
async def incident_notifications(websocket: WebSocket, token: str = Query(...)):
    try:
        caller = decode_access_token(token, websocket.app.state.settings.SECRET_KEY)
    except Unauthenticated:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager = websocket.app.state.connections
    await manager.connect(websocket, caller.id, caller.is_admin)
    logger.info("Notification socket opened for %s (%s)", caller.id, caller.role)
    try:
        while True:
            # clients only listen; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Notification socket closed for %s", caller.id)
        manager.disconnect(websocket, caller.id)
