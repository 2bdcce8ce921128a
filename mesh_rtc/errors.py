"""Exceptions raised by the mesh-rtc relay and orchestrator."""


class MeshRTCError(Exception):
    """Base class for mesh-rtc errors."""

    pass


class RoomFull(MeshRTCError):
    """Raised when a room is at capacity and cannot admit another member.

    Attributes:
        room_key: The room that rejected the join.
        max: The configured room capacity.
    """

    def __init__(self, room_key: str, max: int):
        super().__init__(f"Room {room_key} is full (max {max}).")
        self.room_key = room_key
        self.max = max


class MalformedSignal(MeshRTCError):
    """Raised when a signal message lacks a destination or kind."""

    pass


class NegotiationFailure(MeshRTCError):
    """Raised when the transport reports an unrecoverable connection state.

    Attributes:
        remote_id: Connection id of the peer whose negotiation failed.
        state: The transport connection state that ended the negotiation.
    """

    def __init__(self, remote_id: str, state: str):
        super().__init__(f"Connection to {remote_id} ended in state '{state}'")
        self.remote_id = remote_id
        self.state = state
