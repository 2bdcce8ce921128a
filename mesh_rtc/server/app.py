"""WebSocket server hosting the signaling relay.

Usage:
    mesh-rtc serve [--host HOST] [--port PORT] [--origin ORIGIN]
                   [--max-participants N]
"""

import asyncio
from http import HTTPStatus
from typing import List, Optional

from loguru import logger
from websockets.asyncio.server import serve

from mesh_rtc.server.registry import RoomRegistry
from mesh_rtc.server.relay import SignalingRelay

HEALTH_TEXT = "Signaling server is running\n"


def health_check(connection, request):
    """Answer plain HTTP requests so load balancers can probe the relay."""
    if request.headers.get("Upgrade", "").lower() != "websocket":
        return connection.respond(HTTPStatus.OK, HEALTH_TEXT)
    return None


def build_relay(max_participants: int) -> SignalingRelay:
    return SignalingRelay(RoomRegistry(capacity=max_participants))


async def main(
    host: str,
    port: int,
    max_participants: int,
    origins: Optional[List[str]] = None,
):
    """Start the signaling relay and run forever."""
    relay = build_relay(max_participants)

    # Non-browser clients send no Origin header; only browsers are restricted.
    allowed = origins + [None] if origins else None

    async with serve(
        relay.handler,
        host,
        port,
        origins=allowed,
        process_request=health_check,
    ):
        logger.info(f"Signaling server listening on ws://{host}:{port}")
        logger.info(f"Allowed origins: {', '.join(origins) if origins else '*'}")
        logger.info(f"Max participants per room: {max_participants}")
        await asyncio.Future()  # Run forever
