"""Room membership bookkeeping for the signaling relay.

The registry owns every Membership record. All access goes through
``admit``, ``remove`` and ``members_of``, each of which holds the room's lock
for its whole duration, so the capacity check, the insertion and the
snapshot handed back to the joiner are a single atomic step.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List

from loguru import logger

from mesh_rtc.errors import RoomFull
from mesh_rtc.protocol import DEFAULT_DISPLAY_NAME


@dataclass(frozen=True)
class Membership:
    """A connection's presence in a room.

    Attributes:
        connection_id: Relay-assigned id, stable for the connection's lifetime.
        display_name: Name shown to other members.
        room_key: Room this membership belongs to.
    """

    connection_id: str
    display_name: str
    room_key: str

    def to_dict(self) -> dict:
        """Wire form used in ``peers`` and ``peer-joined`` messages."""
        return {"id": self.connection_id, "name": self.display_name}


@dataclass
class Admission:
    """Result of a successful ``admit``.

    Attributes:
        membership: The newly admitted record.
        current_members: Other members as of admission, in join order.
        already_member: True if the connection was already in the room.
    """

    membership: Membership
    current_members: List[Membership] = field(default_factory=list)
    already_member: bool = False


class _Room:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.members: Dict[str, Membership] = {}
        self.retired = False


class RoomRegistry:
    """Set of active rooms and their members.

    Attributes:
        capacity: Maximum members per room.
    """

    def __init__(self, capacity: int = 4):
        if capacity < 1:
            raise ValueError("Room capacity must be at least 1")
        self.capacity = capacity
        self._rooms: Dict[str, _Room] = {}

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def rooms(self) -> List[str]:
        """Keys of rooms that currently have members."""
        return list(self._rooms)

    async def _lock_room(self, room_key: str, create: bool):
        # A room is retired once its last member leaves. A waiter that was
        # queued on the retired room's lock must start over on the live one.
        while True:
            room = self._rooms.get(room_key)
            if room is None:
                if not create:
                    return None
                room = self._rooms[room_key] = _Room()
            await room.lock.acquire()
            if not room.retired:
                return room
            room.lock.release()

    async def admit(
        self, room_key: str, connection_id: str, display_name: str = ""
    ) -> Admission:
        """Admit a connection to a room.

        Args:
            room_key: Non-empty room key.
            connection_id: Relay-assigned connection id.
            display_name: Requested name; empty becomes "Anonymous".

        Returns:
            Admission with the snapshot of members present before this one.

        Raises:
            ValueError: If room_key is empty.
            RoomFull: If the room already holds ``capacity`` members.
        """
        if not room_key:
            raise ValueError("room_key must be non-empty")

        room = await self._lock_room(room_key, create=True)
        try:
            others = [
                m for cid, m in room.members.items() if cid != connection_id
            ]
            existing = room.members.get(connection_id)
            if existing is not None:
                return Admission(
                    membership=existing, current_members=others, already_member=True
                )

            if len(room.members) >= self.capacity:
                logger.info(
                    f"Rejected {connection_id} from room {room_key}: "
                    f"full ({len(room.members)}/{self.capacity})"
                )
                raise RoomFull(room_key, self.capacity)

            membership = Membership(
                connection_id=connection_id,
                display_name=display_name or DEFAULT_DISPLAY_NAME,
                room_key=room_key,
            )
            room.members[connection_id] = membership
            logger.info(
                f"Admitted {connection_id} ({membership.display_name}) to room "
                f"{room_key} ({len(room.members)}/{self.capacity})"
            )
            return Admission(membership=membership, current_members=others)
        finally:
            room.lock.release()

    async def remove(self, room_key: str, connection_id: str) -> bool:
        """Remove a connection from a room.

        Returns:
            True if a membership was removed, False if there was none.
        """
        room = await self._lock_room(room_key, create=False)
        if room is None:
            return False
        try:
            if room.members.pop(connection_id, None) is None:
                return False
            logger.info(
                f"Removed {connection_id} from room {room_key} "
                f"({len(room.members)} remaining)"
            )
            if not room.members:
                self._retire(room_key, room)
            return True
        finally:
            room.lock.release()

    async def members_of(self, room_key: str) -> List[Membership]:
        """Snapshot of a room's members in join order."""
        room = await self._lock_room(room_key, create=False)
        if room is None:
            return []
        try:
            return list(room.members.values())
        finally:
            room.lock.release()

    def _retire(self, room_key: str, room: _Room) -> None:
        room.retired = True
        if self._rooms.get(room_key) is room:
            del self._rooms[room_key]
            logger.debug(f"Room {room_key} is empty, dropped")
