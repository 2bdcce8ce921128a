"""WebSocket connection from a participant to the signaling relay."""

import logging
from typing import Any, Dict, Optional

import websockets

from mesh_rtc import protocol

logger = logging.getLogger(__name__)


class SignalingClient:
    """Client side of the relay wire protocol.

    ``run`` hands every inbound message to the orchestrator in arrival
    order, awaiting each one before reading the next.

    Attributes:
        url: Relay websocket URL, e.g. ws://localhost:3001.
        websocket: Open connection, or None before ``connect``.
    """

    def __init__(self, url: str):
        self.url = url
        self.websocket = None

    async def connect(self) -> None:
        self.websocket = await websockets.connect(self.url)
        logger.info(f"Connected to signaling server at {self.url}")

    async def send(self, message: Dict[str, Any]) -> None:
        """Send a message; dropped with a warning if the connection is gone."""
        if self.websocket is None:
            logger.warning(f"Cannot send {message.get('type')}: not connected")
            return
        try:
            await self.websocket.send(protocol.encode(message))
        except websockets.exceptions.ConnectionClosed:
            logger.warning(f"Cannot send {message.get('type')}: connection closed")

    async def run(self, orchestrator) -> None:
        """Feed relay messages to the orchestrator until the connection closes."""
        try:
            async for frame in self.websocket:
                data = protocol.decode(frame)
                if data is None:
                    logger.error("Invalid JSON received from signaling server")
                    continue
                try:
                    await orchestrator.handle_message(data)
                except Exception as e:
                    logger.error(f"Error handling {data.get('type')}: {e}")
        except websockets.exceptions.ConnectionClosed:
            logger.info("Signaling connection closed")

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
