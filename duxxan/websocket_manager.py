import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from .config import utcnow

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Global broadcast to every connected client, no per-client filtering"""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.connection_ids: Dict[WebSocket, str] = {}
        self.lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()

        async with self.lock:
            self.active_connections.append(websocket)
            connection_id = str(uuid.uuid4())
            self.connection_ids[websocket] = connection_id

        logger.info(f"Client {connection_id} connected ({len(self.active_connections)} total)")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

        connection_id = self.connection_ids.pop(websocket, None)
        if connection_id:
            logger.info(f"Client {connection_id} disconnected")

    async def broadcast(self, event_type: str, data: Optional[Dict[str, Any]] = None):
        message = jsonable_encoder({
            "type": event_type,
            "data": data or {},
            "timestamp": utcnow().isoformat(),
        })

        async with self.lock:
            connections = list(self.active_connections)

        disconnected = []
        for connection in connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                if "ConnectionClosedOK" not in type(e).__name__:
                    logger.debug(f"Broadcast error: {e}")
                disconnected.append(connection)

        # Remove disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    async def close(self):
        async with self.lock:
            connections = list(self.active_connections)
        for connection in connections:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {e}")
            self.disconnect(connection)

    @property
    def count(self) -> int:
        return len(self.active_connections)
