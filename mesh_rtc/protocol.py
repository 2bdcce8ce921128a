"""Message protocol definitions for mesh-rtc.

This module defines the message types exchanged between participants and the
signaling relay. Every frame is a single JSON object whose ``type`` field
selects the message.

Message Types
-------------

### Client → Relay

**join** ``{"type": "join", "room_key": str, "display_name": str}``
    Ask to be admitted to a room. An empty display name becomes "Anonymous".

**leave** ``{"type": "leave", "room_key": str}``
    Leave a room without closing the connection.

**signal** ``{"type": "signal", "to": str, "kind": str, "payload": any}``
    Negotiation message for one peer. ``kind`` is one of ``offer``,
    ``answer``, ``ice-candidate``. The payload is opaque to the relay.

### Relay → Client

**welcome** ``{"type": "welcome", "id": str}``
    Sent once on connect with the relay-assigned connection id.

**peers** ``{"type": "peers", "peers": [{"id": str, "name": str}, ...]}``
    Members already in the room at the moment of admission, excluding the
    joiner. The joiner initiates a connection to each of them.

**peer-joined** ``{"type": "peer-joined", "id": str, "name": str}``
    Someone joined after you. You respond to their offer.

**peer-left** ``{"type": "peer-left", "id": str}``
    A member left or disconnected.

**room-full** ``{"type": "room-full", "room_key": str, "max": int}``
    The join was rejected; you are not a member.

**error-message** ``{"type": "error-message", "message": str}``
    Human-readable rejection, e.g. a missing room id.

**signal** ``{"type": "signal", "from": str, "kind": str, "payload": any}``
    A relayed negotiation message. ``from`` is stamped by the relay.

Message Flow Example
--------------------

1. A → Relay: join r1            Relay → A: peers []
2. B → Relay: join r1            Relay → B: peers [A]; Relay → A: peer-joined B
3. B → Relay: signal to=A offer  Relay → A: signal from=B offer
4. A → Relay: signal to=B answer Relay → B: signal from=A answer
5. ice-candidate signals flow both ways until the transport connects
6. B disconnects                 Relay → A: peer-left B
"""

import json
from typing import Any, Dict, Optional, Tuple

from mesh_rtc.errors import MalformedSignal

# Client → relay
MSG_JOIN = "join"
MSG_LEAVE = "leave"
MSG_SIGNAL = "signal"

# Relay → client
MSG_WELCOME = "welcome"
MSG_PEERS = "peers"
MSG_PEER_JOINED = "peer-joined"
MSG_PEER_LEFT = "peer-left"
MSG_ROOM_FULL = "room-full"
MSG_ERROR = "error-message"

# Signal kinds
KIND_OFFER = "offer"
KIND_ANSWER = "answer"
KIND_ICE_CANDIDATE = "ice-candidate"
SIGNAL_KINDS = (KIND_OFFER, KIND_ANSWER, KIND_ICE_CANDIDATE)

DEFAULT_DISPLAY_NAME = "Anonymous"
DEFAULT_PEER_NAME = "Peer"

ROOM_ID_REQUIRED = "Room ID is required"


def encode(message: Dict[str, Any]) -> str:
    """Serialize a message dict to a text frame."""
    return json.dumps(message)


def decode(frame) -> Optional[Dict[str, Any]]:
    """Parse a text frame into a message dict.

    Returns:
        The message, or None if the frame is not a JSON object with a type.
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(frame)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not data.get("type"):
        return None
    return data


def join_message(room_key: str, display_name: str = "") -> Dict[str, Any]:
    return {"type": MSG_JOIN, "room_key": room_key, "display_name": display_name}


def leave_message(room_key: str) -> Dict[str, Any]:
    return {"type": MSG_LEAVE, "room_key": room_key}


def signal_message(to: str, kind: str, payload: Any) -> Dict[str, Any]:
    return {"type": MSG_SIGNAL, "to": to, "kind": kind, "payload": payload}


def relayed_signal(sender_id: str, kind: str, payload: Any) -> Dict[str, Any]:
    return {"type": MSG_SIGNAL, "from": sender_id, "kind": kind, "payload": payload}


def parse_signal(data: Dict[str, Any]) -> Tuple[str, str, Any]:
    """Extract ``(to, kind, payload)`` from a client signal message.

    Any ``from`` field supplied by the client is ignored.

    Raises:
        MalformedSignal: If ``to`` or ``kind`` is missing or ``kind`` is unknown.
    """
    to = data.get("to")
    kind = data.get("kind")
    if not to or not kind:
        raise MalformedSignal("signal requires 'to' and 'kind'")
    if kind not in SIGNAL_KINDS:
        raise MalformedSignal(f"unknown signal kind: {kind}")
    return to, kind, data.get("payload")
