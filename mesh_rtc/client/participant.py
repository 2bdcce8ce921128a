"""Entry point for a headless room participant."""

import asyncio
import logging
from typing import Callable, List, Optional

from mesh_rtc.client.events import MeshEvent
from mesh_rtc.client.orchestrator import MeshOrchestrator
from mesh_rtc.client.signaling import SignalingClient
from mesh_rtc.client.transport import AiortcTransportFactory
from mesh_rtc.config import IceServerConfig

logger = logging.getLogger(__name__)


def open_media_source(source: Optional[str], fmt: Optional[str] = None):
    """Open a local media source with aiortc's MediaPlayer.

    Args:
        source: File path or device (e.g. /dev/video0), or None for no media.
        fmt: Optional ffmpeg input format, e.g. "v4l2" or "avfoundation".

    Returns:
        Tuple of (player or None, list of tracks).
    """
    if not source:
        return None, []
    from aiortc.contrib.media import MediaPlayer

    player = MediaPlayer(source, format=fmt)
    tracks = [t for t in (player.audio, player.video) if t is not None]
    return player, tracks


async def run_participant(
    signaling_url: str,
    room_key: str,
    display_name: str = "",
    media_source: Optional[str] = None,
    media_format: Optional[str] = None,
    ice_servers: Optional[List[IceServerConfig]] = None,
    on_event: Optional[Callable[[MeshEvent], None]] = None,
) -> None:
    """Join a room and stay in it until the relay connection closes.

    Args:
        signaling_url: Relay websocket URL.
        room_key: Room to join.
        display_name: Name shown to other members.
        media_source: Optional file or device to send to every peer.
        media_format: Optional ffmpeg input format for the media source.
        ice_servers: STUN/TURN servers for the peer connections.
        on_event: Called with every MeshEvent.
    """
    player, tracks = open_media_source(media_source, media_format)

    signaling = SignalingClient(signaling_url)
    await signaling.connect()

    orchestrator = MeshOrchestrator(
        signaling,
        AiortcTransportFactory(ice_servers),
        local_tracks=tracks,
    )

    async def pump_events():
        async for event in orchestrator.events():
            if on_event:
                on_event(event)

    events_task = asyncio.create_task(pump_events())
    try:
        await orchestrator.join(room_key, display_name)
        await signaling.run(orchestrator)
    finally:
        await orchestrator.leave()
        events_task.cancel()
        for track in tracks:
            track.stop()
        logger.info("Participant stopped")
