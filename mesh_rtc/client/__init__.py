"""Client side of mesh-rtc.

- orchestrator: Per-peer negotiation state machine (MeshOrchestrator)
- negotiation: PeerNegotiation record, states and roles
- transport: Transport capability set and its aiortc implementation
- signaling: WebSocket client for the relay
- events: MeshEvent stream published by the orchestrator
"""

from mesh_rtc.client.events import MeshEvent
from mesh_rtc.client.negotiation import PeerNegotiation
from mesh_rtc.client.orchestrator import MeshOrchestrator
from mesh_rtc.client.signaling import SignalingClient
from mesh_rtc.client.transport import (
    AiortcPeerTransport,
    AiortcTransportFactory,
    PeerTransport,
)

__all__ = [
    "MeshEvent",
    "PeerNegotiation",
    "MeshOrchestrator",
    "SignalingClient",
    "AiortcPeerTransport",
    "AiortcTransportFactory",
    "PeerTransport",
]
