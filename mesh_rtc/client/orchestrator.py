"""Mesh orchestrator: drives one negotiation per remote participant.

This module implements the client side of the mesh. One MeshOrchestrator
exists per local participant and owns a PeerNegotiation for every other
member of the room.

Role assignment:
- Members listed in the ``peers`` snapshot received at join time were in the
  room first, so we are the initiator towards each of them.
- Members announced by ``peer-joined`` arrived after us, so we are the
  responder and wait for their offer.

Negotiation:
1. Initiator: create offer, set local description, send ``offer``
2. Responder: set remote description from the offer, create answer,
   set local description, send ``answer``
3. Initiator: set remote description from the answer
4. Both: the transport reports ``connected``

ICE candidates that arrive before the remote description is set are
buffered and applied in arrival order right after it is set.

Every operation on a peer runs under that peer's lock. Closing a peer
removes its record before anything else, so later messages for it are
ignored.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from mesh_rtc import protocol
from mesh_rtc.client.events import (
    EVENT_DATA_MESSAGE,
    EVENT_MEMBERSHIP_CHANGED,
    EVENT_PEER_CLOSED,
    EVENT_PEER_CONNECTED,
    EVENT_RELAY_ERROR,
    EVENT_ROOM_FULL,
    EVENT_STREAM_ARRIVED,
    MeshEvent,
)
from mesh_rtc.client.negotiation import (
    ROLE_INITIATOR,
    ROLE_RESPONDER,
    STATE_CLOSED,
    STATE_CONNECTED,
    STATE_NEGOTIATING,
    STATE_NEW,
    PeerNegotiation,
)
from mesh_rtc.client.transport import FAILED_STATES, PeerTransport
from mesh_rtc.errors import NegotiationFailure

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "chat"


class MeshOrchestrator:
    """Maintains the local participant's N-1 peer connections.

    Attributes:
        signaling: Object with ``async send(message)`` and ``async close()``.
        transport_factory: Callable returning a new PeerTransport for a remote id.
        local_tracks: Outgoing media tracks attached to every connection.
        renegotiate_fallback: Send a fresh offer when a transport cannot
            replace tracks in place.
        local_id: Our relay connection id, once welcomed.
        room_key: Room we joined.
        members: Other room members we know about, id -> name.
        negotiations: Live negotiations keyed by remote id.
    """

    def __init__(
        self,
        signaling,
        transport_factory: Callable[[str], PeerTransport],
        local_tracks: Optional[Iterable[Any]] = None,
        renegotiate_fallback: bool = False,
        open_data_channel: bool = True,
    ):
        self.signaling = signaling
        self.transport_factory = transport_factory
        self.local_tracks: List[Any] = list(local_tracks or [])
        self.renegotiate_fallback = renegotiate_fallback
        self.open_data_channel = open_data_channel

        self.local_id: Optional[str] = None
        self.room_key: Optional[str] = None
        self.display_name: str = ""
        self.members: Dict[str, str] = {}
        self.negotiations: Dict[str, PeerNegotiation] = {}

        self._subscribers: List[asyncio.Queue] = []
        self._left = False

    # ===== Event stream =====

    def subscribe(self) -> asyncio.Queue:
        """Return a queue that receives every subsequent MeshEvent."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def events(self) -> AsyncIterator[MeshEvent]:
        """Iterate over events from now on."""
        queue = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)

    def _emit(self, kind: str, remote_id: Optional[str] = None, **kwargs) -> None:
        event = MeshEvent(kind=kind, remote_id=remote_id, **kwargs)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def _emit_membership(self) -> None:
        self._emit(EVENT_MEMBERSHIP_CHANGED, data=dict(self.members))

    # ===== Room lifecycle =====

    async def join(self, room_key: str, display_name: str = "") -> None:
        """Ask the relay to admit us to a room."""
        self.room_key = room_key
        self.display_name = display_name
        self._left = False
        await self.signaling.send(protocol.join_message(room_key, display_name))

    async def leave(self) -> None:
        """Close every peer connection and the signaling connection."""
        if self._left:
            return
        self._left = True
        for remote_id in list(self.negotiations):
            await self.close_peer(remote_id, reason="leave")
        self.members.clear()
        await self.signaling.close()
        logger.info(f"Left room {self.room_key}")

    # ===== Relay messages =====

    async def handle_message(self, data: Dict[str, Any]) -> None:
        """Apply one message received from the relay."""
        msg_type = data.get("type")

        if msg_type == protocol.MSG_WELCOME:
            self.local_id = data.get("id")
            logger.info(f"Signaling connected as {self.local_id}")

        elif msg_type == protocol.MSG_PEERS:
            peers = data.get("peers") or []
            for peer in peers:
                self.members[peer["id"]] = peer.get("name") or protocol.DEFAULT_PEER_NAME
            self._emit_membership()
            for peer in peers:
                await self.add_peer(peer["id"], peer.get("name"), ROLE_INITIATOR)

        elif msg_type == protocol.MSG_PEER_JOINED:
            remote_id = data.get("id")
            if not remote_id:
                logger.warning("peer-joined message missing id")
                return
            name = data.get("name") or protocol.DEFAULT_PEER_NAME
            self.members[remote_id] = name
            self._emit_membership()
            await self.add_peer(remote_id, name, ROLE_RESPONDER)

        elif msg_type == protocol.MSG_PEER_LEFT:
            remote_id = data.get("id")
            await self.close_peer(remote_id, reason="peer-left")
            if self.members.pop(remote_id, None) is not None:
                self._emit_membership()

        elif msg_type == protocol.MSG_SIGNAL:
            await self.handle_signal(data.get("from"), data.get("kind"), data.get("payload"))

        elif msg_type == protocol.MSG_ROOM_FULL:
            logger.warning(f"Room {data.get('room_key')} is full (max {data.get('max')})")
            self._emit(
                EVENT_ROOM_FULL,
                data={"room_key": data.get("room_key"), "max": data.get("max")},
            )

        elif msg_type == protocol.MSG_ERROR:
            logger.warning(f"Relay error: {data.get('message')}")
            self._emit(EVENT_RELAY_ERROR, data=data.get("message"))

        else:
            logger.debug(f"Ignoring relay message type: {msg_type}")

    # ===== Peer lifecycle =====

    async def add_peer(
        self, remote_id: str, name: Optional[str], role: str
    ) -> Optional[PeerNegotiation]:
        """Create the negotiation for a newly known peer.

        Initiators send their offer immediately. A peer that is already
        known keeps its existing negotiation.
        """
        if remote_id in self.negotiations or remote_id == self.local_id:
            return None

        transport = self.transport_factory(remote_id)
        negotiation = PeerNegotiation(
            remote_id=remote_id,
            remote_name=name or protocol.DEFAULT_PEER_NAME,
            role=role,
            transport=transport,
        )
        self.negotiations[remote_id] = negotiation
        self._bind_transport(negotiation)
        transport.attach_local_tracks(self.local_tracks)
        logger.info(f"Tracking peer {remote_id} ({negotiation.remote_name}) as {role}")

        if role == ROLE_INITIATOR:
            if self.open_data_channel:
                transport.open_data_channel(DATA_CHANNEL_LABEL)
            async with negotiation.lock:
                await self._guarded(negotiation, self._send_offer(negotiation))
        return negotiation

    def _bind_transport(self, negotiation: PeerNegotiation) -> None:
        remote_id = negotiation.remote_id
        transport = negotiation.transport

        @transport.on("connectionstatechange")
        async def on_connection_state(state):
            await self.on_connection_state(remote_id, state)

        @transport.on("track")
        def on_track(track):
            if remote_id in self.negotiations:
                self._emit(
                    EVENT_STREAM_ARRIVED,
                    remote_id,
                    name=negotiation.remote_name,
                    data=track,
                )

        @transport.on("icecandidate")
        async def on_ice_candidate(candidate):
            await self.on_local_candidate(remote_id, candidate)

        @transport.on("message")
        def on_message(message):
            self._emit(
                EVENT_DATA_MESSAGE, remote_id, name=negotiation.remote_name, data=message
            )

    async def close_peer(self, remote_id: Optional[str], reason: Any = None) -> bool:
        """Close a peer's negotiation and release its transport.

        Returns:
            True if the peer was open, False if it was unknown or already closed.
        """
        negotiation = self.negotiations.pop(remote_id, None)
        if negotiation is None:
            return False

        negotiation.state = STATE_CLOSED
        negotiation.pending_candidates.clear()
        negotiation.awaiting_answer = False
        logger.info(f"Closing peer {remote_id} ({reason})")
        self._emit(
            EVENT_PEER_CLOSED, remote_id, name=negotiation.remote_name, data=reason
        )

        try:
            await negotiation.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport for {remote_id}: {e}")
        return True

    async def _guarded(self, negotiation: PeerNegotiation, operation) -> None:
        # Offer/answer failures end this peer only.
        try:
            await operation
        except Exception as e:
            logger.error(f"Negotiation with {negotiation.remote_id} failed: {e}")
            await self.close_peer(negotiation.remote_id, reason=e)

    # ===== Negotiation =====

    async def handle_signal(self, remote_id: Optional[str], kind: Optional[str], payload: Any) -> None:
        """Apply a relayed offer, answer or ICE candidate from a peer."""
        negotiation = self.negotiations.get(remote_id)
        if negotiation is None:
            logger.debug(f"Ignoring {kind} from unknown peer {remote_id}")
            return

        async with negotiation.lock:
            if negotiation.closed:
                return
            if kind == protocol.KIND_OFFER:
                await self._guarded(negotiation, self._accept_offer(negotiation, payload))
            elif kind == protocol.KIND_ANSWER:
                await self._guarded(negotiation, self._accept_answer(negotiation, payload))
            elif kind == protocol.KIND_ICE_CANDIDATE:
                await self._accept_candidate(negotiation, payload)
            else:
                logger.debug(f"Ignoring signal kind {kind} from {remote_id}")

    async def _send_offer(self, negotiation: PeerNegotiation) -> None:
        transport = negotiation.transport
        offer = await transport.create_offer()
        local = await transport.set_local_description(offer)
        if negotiation.closed:
            return
        negotiation.awaiting_answer = True
        if negotiation.state == STATE_NEW:
            negotiation.state = STATE_NEGOTIATING
        await self._signal(negotiation.remote_id, protocol.KIND_OFFER, local)
        logger.info(f"Sent offer to {negotiation.remote_id}")

    async def _accept_offer(self, negotiation: PeerNegotiation, offer: Dict[str, Any]) -> None:
        if negotiation.state == STATE_NEW:
            negotiation.state = STATE_NEGOTIATING
        transport = negotiation.transport
        await transport.set_remote_description(offer)
        await self._flush_candidates(negotiation)
        if negotiation.closed:
            return

        answer = await transport.create_answer()
        local = await transport.set_local_description(answer)
        if negotiation.closed:
            return
        await self._signal(negotiation.remote_id, protocol.KIND_ANSWER, local)
        logger.info(f"Sent answer to {negotiation.remote_id}")

    async def _accept_answer(self, negotiation: PeerNegotiation, answer: Dict[str, Any]) -> None:
        if not negotiation.awaiting_answer:
            logger.warning(f"Ignoring unsolicited answer from {negotiation.remote_id}")
            return
        await negotiation.transport.set_remote_description(answer)
        negotiation.awaiting_answer = False
        await self._flush_candidates(negotiation)
        logger.info(f"Applied answer from {negotiation.remote_id}")

    async def _accept_candidate(self, negotiation: PeerNegotiation, candidate: Dict[str, Any]) -> None:
        if not negotiation.transport.remote_description_set:
            negotiation.pending_candidates.append(candidate)
            logger.debug(f"Buffered ICE candidate from {negotiation.remote_id}")
            return
        await self._apply_candidate(negotiation, candidate)

    async def _flush_candidates(self, negotiation: PeerNegotiation) -> None:
        for candidate in negotiation.take_pending():
            if negotiation.closed:
                return
            await self._apply_candidate(negotiation, candidate)

    async def _apply_candidate(self, negotiation: PeerNegotiation, candidate: Dict[str, Any]) -> None:
        try:
            await negotiation.transport.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(
                f"Discarding ICE candidate from {negotiation.remote_id}: {e}"
            )

    async def _signal(self, remote_id: str, kind: str, payload: Any) -> None:
        await self.signaling.send(protocol.signal_message(remote_id, kind, payload))

    # ===== Transport events =====

    async def on_connection_state(self, remote_id: str, state: str) -> None:
        """React to a transport connection state change for one peer."""
        negotiation = self.negotiations.get(remote_id)
        if negotiation is None:
            return

        if state == "connected":
            async with negotiation.lock:
                if negotiation.closed or negotiation.state == STATE_CONNECTED:
                    return
                negotiation.state = STATE_CONNECTED
            logger.info(f"Connected to {remote_id}")
            self._emit(EVENT_PEER_CONNECTED, remote_id, name=negotiation.remote_name)
        elif state in FAILED_STATES:
            await self.close_peer(remote_id, reason=NegotiationFailure(remote_id, state))

    async def on_local_candidate(self, remote_id: str, candidate: Dict[str, Any]) -> None:
        """Forward a locally gathered ICE candidate to its peer."""
        if remote_id not in self.negotiations:
            return
        await self._signal(remote_id, protocol.KIND_ICE_CANDIDATE, candidate)

    # ===== Media =====

    async def replace_track(self, kind: str, track: Any) -> int:
        """Switch the outgoing track of ``kind`` on every peer connection.

        The previous local track of that kind is stopped. Transports that
        cannot swap tracks in place are skipped, or renegotiated with a new
        offer when ``renegotiate_fallback`` is set.

        Returns:
            Number of peers whose outgoing track changed.
        """
        for old in [t for t in self.local_tracks if t.kind == kind]:
            self.local_tracks.remove(old)
            if old is not track:
                old.stop()
        if track is not None:
            self.local_tracks.append(track)

        changed = 0
        for negotiation in list(self.negotiations.values()):
            async with negotiation.lock:
                if negotiation.closed:
                    continue
                transport = negotiation.transport
                if transport.supports_track_replacement:
                    try:
                        if await transport.replace_outgoing_track(kind, track):
                            changed += 1
                    except Exception as e:
                        logger.warning(
                            f"Track replacement failed for {negotiation.remote_id}: {e}"
                        )
                elif (
                    self.renegotiate_fallback
                    and track is not None
                    and negotiation.state == STATE_CONNECTED
                ):
                    # Reuses the existing outgoing slot of this kind
                    transport.attach_local_tracks([track])
                    await self._guarded(negotiation, self._send_offer(negotiation))
                    changed += 1
                else:
                    logger.debug(
                        f"Transport for {negotiation.remote_id} cannot replace tracks, skipping"
                    )
        return changed

    def send_data(self, message) -> int:
        """Send a message on every open data channel.

        Returns:
            Number of peers the message was sent to.
        """
        sent = 0
        for negotiation in list(self.negotiations.values()):
            if negotiation.transport.send_data(message):
                sent += 1
        return sent

    def peer_states(self) -> Dict[str, str]:
        """Current negotiation state for each live peer."""
        return {rid: n.state for rid, n in self.negotiations.items()}
