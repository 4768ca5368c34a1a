"""
WebSocket server that relays bus events to connected UI clients.

On connect, a client receives the recent event history. Afterwards it
receives every forwarded event and periodic clock state. Clients may send
commands: set_speed, pause, resume, and emit (publish a domain event such
as networkConnected onto the bus on the client's behalf).
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

import websockets
from websockets.server import ServerConnection

from gamecore.core.clock import GameClock
from gamecore.core.event_bus import NotificationBus
from gamecore.transport.base import TransportAdapter

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, tuple)):
        return list(obj)
    return str(obj)


def dumps(message: dict) -> str:
    return json.dumps(message, default=_json_default)


class WebSocketAdapter(TransportAdapter):
    """WebSocket server broadcasting events and clock state to clients."""

    def __init__(
        self,
        bus: NotificationBus,
        clock: GameClock,
        host: str = "0.0.0.0",
        port: int = 8765,
        history_replay: int = 100,
    ) -> None:
        self._bus = bus
        self._clock = clock
        self._host = host
        self._port = port
        self._history_replay = history_replay
        self._clients: set[ServerConnection] = set()
        self._server: Any = None
        self._command_handlers: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "websocket"

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def set_command_handler(self, command: str, handler: Any) -> None:
        """Register an async handler for an incoming client command."""
        self._command_handlers[command] = handler

    async def connect(self) -> None:
        self._server = await websockets.serve(self._handle_client, self._host, self._port)
        logger.info(f"WebSocket server started on ws://{self._host}:{self._port}")

    async def disconnect(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
        logger.info("WebSocket server stopped")

    async def push_event(self, event: dict) -> None:
        await self._broadcast(dumps({"type": "event", "event": event}))

    async def push_clock(self, state: dict) -> None:
        await self._broadcast(dumps({"type": "clock", **state}))

    async def _handle_client(self, websocket: ServerConnection) -> None:
        self._clients.add(websocket)
        logger.info(f"Client connected ({len(self._clients)} total)")
        try:
            history = [r.to_dict() for r in self._bus.get_history(self._history_replay)]
            await websocket.send(dumps({"type": "history", "events": history}))

            async for message in websocket:
                await self._handle_message(message)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            logger.info(f"Client disconnected ({len(self._clients)} total)")

    async def _handle_message(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from client: {raw[:100]}")
            return

        msg_type = msg.get("cmd") or msg.get("type")

        if msg_type == "set_speed":
            try:
                speed = float(msg.get("speed", 1.0))
            except (TypeError, ValueError):
                logger.warning(f"Invalid speed from client: {msg.get('speed')!r}")
                return
            if self._clock.set_speed(speed):
                logger.info(f"Clock speed set to {speed}x")
        elif msg_type == "pause":
            self._clock.pause()
            logger.info("Clock paused")
        elif msg_type == "resume":
            self._clock.resume()
            logger.info("Clock resumed")
        elif msg_type == "emit":
            event_type = msg.get("event")
            if not event_type:
                logger.warning("emit command without 'event'")
                return
            self._bus.emit(event_type, msg.get("data") or {})
        elif msg_type in self._command_handlers:
            await self._command_handlers[msg_type](msg)
        else:
            logger.debug(f"Unknown message type: {msg_type}")

    async def _broadcast(self, message: str) -> None:
        if not self._clients:
            return
        disconnected = set()
        for client in self._clients:
            try:
                await client.send(message)
            except websockets.ConnectionClosed:
                disconnected.add(client)
        self._clients -= disconnected
