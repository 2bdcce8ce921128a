"""Full-mesh WebRTC rooms: signaling relay and client-side mesh negotiation."""

__version__ = "0.1.0"
