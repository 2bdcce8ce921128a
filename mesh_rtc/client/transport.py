"""Transport engine capability set consumed by the mesh orchestrator.

``PeerTransport`` is the abstract set of operations the negotiation state
machine needs from a media engine: building offers and answers, applying
descriptions and ICE candidates, attaching and swapping outgoing tracks.
``AiortcPeerTransport`` implements it on top of an aiortc
``RTCPeerConnection``.

Descriptions cross this boundary as plain dicts (``{"type", "sdp"}``) and
candidates as ``{"candidate", "sdpMid", "sdpMLineIndex"}`` so they can be
put on the wire unchanged.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaRelay
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from mesh_rtc.config import IceServerConfig

logger = logging.getLogger(__name__)

# Connection states after which a peer connection cannot recover
FAILED_STATES = ("failed", "disconnected", "closed")


class PeerTransport(ABC):
    """One peer connection as seen by the orchestrator.

    Events, registered with ``on(event, handler)``:
        connectionstatechange(state): transport connection state changed
        track(track): a remote media track arrived
        icecandidate(candidate): a local candidate to send to the peer
        message(data): text or bytes received on the data channel

    Handlers may be coroutine functions; they are scheduled as tasks.
    """

    #: Whether outgoing tracks can be swapped without a new offer/answer.
    supports_track_replacement: bool = True

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: str, handler: Optional[Callable] = None):
        """Register an event handler. Usable as a decorator."""

        def register(fn):
            self._listeners.setdefault(event, []).append(fn)
            return fn

        if handler is None:
            return register
        return register(handler)

    def emit(self, event: str, *args) -> None:
        for handler in list(self._listeners.get(event, [])):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    @property
    @abstractmethod
    def connection_state(self) -> str: ...

    @property
    @abstractmethod
    def remote_description_set(self) -> bool: ...

    @abstractmethod
    async def create_offer(self) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_answer(self) -> Dict[str, Any]: ...

    @abstractmethod
    async def set_local_description(self, description: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a local description and return the one to send to the peer."""

    @abstractmethod
    async def set_remote_description(self, description: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None: ...

    @abstractmethod
    def attach_local_tracks(self, tracks: Iterable[Any]) -> None:
        """Send tracks to the peer, one outgoing slot per kind.

        A track whose kind already has a slot takes that slot over.
        """

    @abstractmethod
    async def replace_outgoing_track(self, kind: str, track: Any) -> bool:
        """Swap the outgoing track of ``kind``. Returns False if no slot of that kind exists."""

    @abstractmethod
    def open_data_channel(self, label: str) -> None: ...

    @abstractmethod
    def send_data(self, data) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


def description_to_dict(description: RTCSessionDescription) -> Dict[str, Any]:
    return {"type": description.type, "sdp": description.sdp}


def parse_candidate(candidate: Dict[str, Any]):
    """Build an aiortc RTCIceCandidate from its wire form.

    Returns:
        The candidate, or None for an end-of-candidates marker.
    """
    sdp = candidate.get("candidate") or ""
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    if not sdp:
        return None
    ice = candidate_from_sdp(sdp)
    ice.sdpMid = candidate.get("sdpMid")
    ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
    return ice


class AiortcPeerTransport(PeerTransport):
    """PeerTransport backed by an aiortc RTCPeerConnection.

    Outgoing tracks are subscribed through a shared MediaRelay so one local
    source can feed every peer connection in the mesh.
    """

    def __init__(
        self,
        ice_servers: Optional[List[IceServerConfig]] = None,
        media_relay: Optional[MediaRelay] = None,
    ):
        super().__init__()
        servers = [
            RTCIceServer(urls=s.urls, username=s.username, credential=s.credential)
            for s in (ice_servers or [])
        ]
        self.pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))
        self.media_relay = media_relay or MediaRelay()
        self.data_channel = None

        @self.pc.on("connectionstatechange")
        def on_connection_state_change():
            logger.debug(f"Connection state: {self.pc.connectionState}")
            self.emit("connectionstatechange", self.pc.connectionState)

        @self.pc.on("track")
        def on_track(track):
            logger.debug(f"Received remote {track.kind} track")
            self.emit("track", track)

        # aiortc gathers candidates into the SDP, but forward trickled ones
        # if the engine ever reports them.
        @self.pc.on("icecandidate")
        def on_ice_candidate(candidate):
            if candidate is not None:
                self.emit(
                    "icecandidate",
                    {
                        "candidate": f"candidate:{candidate_to_sdp(candidate)}",
                        "sdpMid": candidate.sdpMid,
                        "sdpMLineIndex": candidate.sdpMLineIndex,
                    },
                )

        @self.pc.on("datachannel")
        def on_datachannel(channel):
            logger.debug(f"Received data channel: {channel.label}")
            self._bind_channel(channel)

    def _bind_channel(self, channel):
        self.data_channel = channel

        @channel.on("message")
        def on_message(message):
            self.emit("message", message)

        @channel.on("close")
        def on_close():
            if self.data_channel is channel:
                self.data_channel = None

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    @property
    def remote_description_set(self) -> bool:
        return self.pc.remoteDescription is not None

    async def create_offer(self) -> Dict[str, Any]:
        return description_to_dict(await self.pc.createOffer())

    async def create_answer(self) -> Dict[str, Any]:
        return description_to_dict(await self.pc.createAnswer())

    async def set_local_description(self, description: Dict[str, Any]) -> Dict[str, Any]:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        # localDescription now carries the gathered candidates
        return description_to_dict(self.pc.localDescription)

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        ice = parse_candidate(candidate)
        if ice is None:
            return
        await self.pc.addIceCandidate(ice)

    def _sending_transceivers(self, kind: str) -> List[Any]:
        # A sender keeps its transceiver after replaceTrack(None), so match
        # on the transceiver kind rather than the current track.
        return [
            t
            for t in self.pc.getTransceivers()
            if t.kind == kind and "send" in t.direction
        ]

    def attach_local_tracks(self, tracks: Iterable[Any]) -> None:
        for track in tracks:
            existing = self._sending_transceivers(track.kind)
            if existing:
                existing[0].sender.replaceTrack(self.media_relay.subscribe(track))
            else:
                self.pc.addTrack(self.media_relay.subscribe(track))

    async def replace_outgoing_track(self, kind: str, track: Any) -> bool:
        transceivers = self._sending_transceivers(kind)
        for transceiver in transceivers:
            transceiver.sender.replaceTrack(
                self.media_relay.subscribe(track) if track is not None else None
            )
        return bool(transceivers)

    def open_data_channel(self, label: str) -> None:
        self._bind_channel(self.pc.createDataChannel(label))

    def send_data(self, data) -> bool:
        if self.data_channel is None or self.data_channel.readyState != "open":
            return False
        self.data_channel.send(data)
        return True

    async def close(self) -> None:
        await self.pc.close()


class AiortcTransportFactory:
    """Creates one AiortcPeerTransport per remote participant."""

    def __init__(self, ice_servers: Optional[List[IceServerConfig]] = None):
        self.ice_servers = ice_servers
        self.media_relay = MediaRelay()

    def __call__(self, remote_id: str) -> AiortcPeerTransport:
        return AiortcPeerTransport(self.ice_servers, media_relay=self.media_relay)
