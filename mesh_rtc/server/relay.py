"""Signaling relay: routes join/leave/signal messages between room members.

Each websocket connection gets a ``RelaySession``. Inbound frames are
handled one at a time in arrival order. Outbound messages go through the
session's own queue and a single writer task, so everything addressed to
one connection is sent in the order it was enqueued. Signal payloads are
forwarded untouched.

Delivery is best-effort: a message for a connection that is gone is
dropped, and nothing is retried.
"""

import asyncio
import uuid
from typing import Any, Dict, Optional

import websockets
from loguru import logger

from mesh_rtc import protocol
from mesh_rtc.errors import MalformedSignal, RoomFull
from mesh_rtc.server.registry import RoomRegistry


class RelaySession:
    """Relay-side state for one client connection.

    Attributes:
        connection_id: Relay-assigned id, never taken from the client.
        websocket: Connection the session writes to.
        rooms: Keys of rooms this connection is a member of.
    """

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or uuid.uuid4().hex
        self.rooms: Dict[str, None] = {}
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer_task: Optional[asyncio.Task] = None

    def start(self):
        """Start the writer task. Must be called from a running loop."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer_loop())

    def deliver(self, message: Dict[str, Any]) -> None:
        """Enqueue a message for this connection without suspending."""
        if self.closed:
            return
        self._outbox.put_nowait(message)

    async def flush(self):
        """Wait until every enqueued message has been written."""
        await self._outbox.join()

    async def _writer_loop(self):
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send(protocol.encode(message))
            except websockets.exceptions.ConnectionClosed:
                logger.debug(
                    f"Dropped {message.get('type')} for {self.connection_id}: "
                    f"connection closed"
                )
            except Exception as e:
                logger.warning(
                    f"Failed to send {message.get('type')} to {self.connection_id}: {e}"
                )
            finally:
                self._outbox.task_done()

    async def close(self):
        """Stop the writer. Pending messages are discarded."""
        self.closed = True
        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None


class SignalingRelay:
    """Turns client messages into registry operations and deliveries.

    Attributes:
        registry: Shared room registry.
        sessions: Open sessions keyed by connection id.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.sessions: Dict[str, RelaySession] = {}

    def open_session(self, websocket) -> RelaySession:
        """Register a new connection and greet it with its id."""
        session = RelaySession(websocket)
        self.sessions[session.connection_id] = session
        session.start()
        session.deliver({"type": protocol.MSG_WELCOME, "id": session.connection_id})
        logger.info(
            f"Connected: {session.connection_id} (total: {len(self.sessions)})"
        )
        return session

    def send_to(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """Enqueue a message for a connection.

        Returns:
            False if the connection is unknown (the message is dropped).
        """
        session = self.sessions.get(connection_id)
        if session is None:
            return False
        session.deliver(message)
        return True

    async def handler(self, websocket):
        """Serve one websocket connection until it closes."""
        session = self.open_session(websocket)
        try:
            async for message in websocket:
                await self.handle_message(session, message)
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Connection lost: {session.connection_id}")
        finally:
            await self.disconnect(session)

    async def handle_message(self, session: RelaySession, frame) -> None:
        """Dispatch a single inbound frame."""
        data = protocol.decode(frame)
        if data is None:
            logger.warning(f"Ignoring malformed frame from {session.connection_id}")
            return

        msg_type = data["type"]
        try:
            if msg_type == protocol.MSG_SIGNAL:
                self.handle_signal(session, data)
            elif msg_type == protocol.MSG_JOIN:
                await self.handle_join(session, data)
            elif msg_type == protocol.MSG_LEAVE:
                await self.handle_leave(session, data)
            else:
                logger.debug(
                    f"Ignoring message type {msg_type} from {session.connection_id}"
                )
        except Exception as e:
            logger.error(
                f"Error processing {msg_type} from {session.connection_id}: {e}"
            )

    async def handle_join(self, session: RelaySession, data: Dict[str, Any]) -> None:
        room_key = data.get("room_key")
        if not room_key or not isinstance(room_key, str):
            session.deliver(
                {"type": protocol.MSG_ERROR, "message": protocol.ROOM_ID_REQUIRED}
            )
            return

        display_name = data.get("display_name") or ""
        try:
            admission = await self.registry.admit(
                room_key, session.connection_id, str(display_name)
            )
        except RoomFull as e:
            session.deliver(
                {"type": protocol.MSG_ROOM_FULL, "room_key": e.room_key, "max": e.max}
            )
            return

        # No await between the snapshot and the broadcast: every existing
        # member has peer-joined queued before the joiner can signal them.
        session.rooms[room_key] = None
        session.deliver(
            {
                "type": protocol.MSG_PEERS,
                "peers": [m.to_dict() for m in admission.current_members],
            }
        )
        if admission.already_member:
            return

        notice = {"type": protocol.MSG_PEER_JOINED, **admission.membership.to_dict()}
        for member in admission.current_members:
            self.send_to(member.connection_id, notice)

    def handle_signal(self, session: RelaySession, data: Dict[str, Any]) -> None:
        try:
            to, kind, payload = protocol.parse_signal(data)
        except MalformedSignal as e:
            logger.debug(f"Dropped signal from {session.connection_id}: {e}")
            return

        envelope = protocol.relayed_signal(session.connection_id, kind, payload)
        if not self.send_to(to, envelope):
            logger.debug(
                f"Undeliverable {kind} from {session.connection_id}: {to} not connected"
            )

    async def handle_leave(self, session: RelaySession, data: Dict[str, Any]) -> None:
        room_key = data.get("room_key")
        if room_key in session.rooms:
            await self._leave_room(session, room_key)

    async def _leave_room(self, session: RelaySession, room_key: str) -> None:
        session.rooms.pop(room_key, None)
        if not await self.registry.remove(room_key, session.connection_id):
            return
        notice = {"type": protocol.MSG_PEER_LEFT, "id": session.connection_id}
        for member in await self.registry.members_of(room_key):
            self.send_to(member.connection_id, notice)

    async def disconnect(self, session: RelaySession) -> None:
        """Remove a connection from every room it joined and notify the rest."""
        self.sessions.pop(session.connection_id, None)
        for room_key in list(session.rooms):
            await self._leave_room(session, room_key)
        await session.close()
        logger.info(
            f"Disconnected: {session.connection_id} (remaining: {len(self.sessions)})"
        )
