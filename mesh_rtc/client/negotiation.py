"""Per-peer negotiation record owned by the mesh orchestrator."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List

from mesh_rtc.client.transport import PeerTransport

# Negotiation states
STATE_NEW = "new"
STATE_NEGOTIATING = "negotiating"
STATE_CONNECTED = "connected"
STATE_CLOSED = "closed"

# Roles, fixed for the lifetime of the negotiation
ROLE_INITIATOR = "initiator"
ROLE_RESPONDER = "responder"


@dataclass
class PeerNegotiation:
    """Negotiation state for one remote participant.

    Attributes:
        remote_id: Relay connection id of the remote participant.
        remote_name: Display name of the remote participant.
        role: ROLE_INITIATOR if we send the offer, ROLE_RESPONDER otherwise.
        transport: Peer connection handle.
        state: One of new, negotiating, connected, closed.
        pending_candidates: Candidates received before a remote description.
        awaiting_answer: An offer from this side has not been answered yet.
        lock: Serializes every operation on this peer.
    """

    remote_id: str
    remote_name: str
    role: str
    transport: PeerTransport
    state: str = STATE_NEW
    pending_candidates: Deque[Dict[str, Any]] = field(default_factory=deque)
    awaiting_answer: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_initiator(self) -> bool:
        return self.role == ROLE_INITIATOR

    @property
    def closed(self) -> bool:
        return self.state == STATE_CLOSED

    def take_pending(self) -> List[Dict[str, Any]]:
        """Remove and return buffered candidates in arrival order."""
        pending = list(self.pending_candidates)
        self.pending_candidates.clear()
        return pending
