"""Events published by the mesh orchestrator.

Consumers (a UI, the CLI, tests) subscribe to the orchestrator instead of
registering callbacks on it.
"""

from dataclasses import dataclass
from typing import Any, Optional

EVENT_MEMBERSHIP_CHANGED = "membership-changed"
EVENT_STREAM_ARRIVED = "stream-arrived"
EVENT_PEER_CONNECTED = "peer-connected"
EVENT_PEER_CLOSED = "peer-closed"
EVENT_DATA_MESSAGE = "data-message"
EVENT_ROOM_FULL = "room-full"
EVENT_RELAY_ERROR = "relay-error"


@dataclass
class MeshEvent:
    """Something that happened in the local participant's mesh.

    Attributes:
        kind: One of the EVENT_* constants.
        remote_id: Peer the event concerns, if any.
        name: Peer display name, if known.
        data: Event-specific value: the member roster for membership-changed,
            the remote track for stream-arrived, the close reason for
            peer-closed, the message for data-message and relay-error, the
            ``{"room_key", "max"}`` notice for room-full.
    """

    kind: str
    remote_id: Optional[str] = None
    name: Optional[str] = None
    data: Any = None
