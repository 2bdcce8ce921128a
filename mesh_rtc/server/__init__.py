"""Server side of mesh-rtc.

- registry: Room membership with per-room locking (RoomRegistry, Membership)
- relay: Per-connection sessions and message routing (SignalingRelay)
- app: websockets server hosting the relay
"""

from mesh_rtc.server.registry import Admission, Membership, RoomRegistry
from mesh_rtc.server.relay import RelaySession, SignalingRelay

__all__ = [
    "Admission",
    "Membership",
    "RoomRegistry",
    "RelaySession",
    "SignalingRelay",
]
