import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..scanner.engine import DiscoveryEngine

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 30.0


def encode_event(event_type: str, data: dict) -> str:
    # datetimes go out as str()
    return json.dumps({"type": event_type, "data": data}, default=str)


class ConnectionManager:
    """Fans engine events out to every connected WebSocket client."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self.clients)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.clients.discard(websocket)

    async def send(self, websocket: WebSocket, event_type: str, data: dict):
        await websocket.send_text(encode_event(event_type, data))

    async def broadcast(self, event_type: str, data: dict):
        """Send one event to all clients, dropping the ones that went away."""
        message = encode_event(event_type, data)
        gone = set()
        for client in list(self.clients):
            try:
                await client.send_text(message)
            except Exception as e:
                logger.debug("Dropping WebSocket client: %s", e)
                gone.add(client)
        self.clients -= gone

    async def engine_callback(self, event_type: str, data: dict):
        """EventBus subscriber."""
        await self.broadcast(event_type, data)


async def _snapshot(engine: DiscoveryEngine) -> dict:
    devices = await engine.list_devices()
    network = engine.network
    return {
        "message": "Connected to LAN Cut WebSocket",
        "network": network.to_dict() if network else None,
        "is_scanning": engine.scanner.is_scanning,
        "devices": [d.to_dict() for d in devices],
    }


def _scan_status(engine: DiscoveryEngine) -> dict:
    scanner = engine.scanner
    return {
        "is_scanning": scanner.is_scanning,
        "progress": scanner.progress,
        "status": scanner.status,
    }


async def _reply(engine: DiscoveryEngine, message: dict) -> Optional[tuple[str, dict]]:
    msg_type = message.get("type")
    if msg_type == "ping":
        return "pong", {}
    if msg_type == "scan_status":
        return "scan_status", _scan_status(engine)
    if msg_type == "devices":
        return "devices", {"devices": [d.to_dict() for d in await engine.list_devices()]}
    return None


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live engine events; clients may also ask for a ping, the scan status or the device list."""
    manager: ConnectionManager = websocket.app.state.connections
    engine: DiscoveryEngine = websocket.app.state.engine
    await manager.connect(websocket)

    try:
        await manager.send(websocket, "connected", await _snapshot(engine))

        while True:
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                try:
                    await manager.send(websocket, "ping", {})
                except Exception:
                    break
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed WebSocket message")
                continue
            if not isinstance(message, dict):
                continue

            reply = await _reply(engine, message)
            if reply:
                await manager.send(websocket, *reply)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
