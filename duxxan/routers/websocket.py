import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..config import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live feed of platform events; every client gets every event"""
    manager = websocket.app.state.container.ws_manager
    await manager.connect(websocket)
    try:
        await websocket.send_json({
            "type": "connection_established",
            "data": {"clients": manager.count},
            "timestamp": utcnow().isoformat(),
        })

        while True:
            data = await websocket.receive_text()
            # клиенты ничего не присылают, кроме ping
            if data == "ping":
                await websocket.send_json({"type": "pong", "timestamp": utcnow().isoformat()})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
