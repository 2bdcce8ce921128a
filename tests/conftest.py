"""Shared in-memory fakes for relay and orchestrator tests."""

import asyncio
import json

import pytest
import websockets

from mesh_rtc.client.transport import PeerTransport

# Sentinels pushed into FakeWebSocket.inbound
CLOSE = object()
DROP = object()


class FakeWebSocket:
    """Relay-side view of a client connection.

    Frames the client sends go into ``inbound``; frames the relay sends are
    recorded in ``sent`` and mirrored into ``outbound`` for the client.
    """

    def __init__(self):
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.outbound: asyncio.Queue = asyncio.Queue()
        self.sent = []

    async def send(self, frame):
        self.sent.append(frame)
        self.outbound.put_nowait(frame)

    def messages(self, msg_type=None):
        decoded = [json.loads(f) for f in self.sent]
        if msg_type is None:
            return decoded
        return [m for m in decoded if m["type"] == msg_type]

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.inbound.get()
        if frame is CLOSE:
            raise StopAsyncIteration
        if frame is DROP:
            raise websockets.exceptions.ConnectionClosedError(None, None)
        return frame


class FakeSignaling:
    """Records what an orchestrator sends to the relay."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        self.closed = True

    def signals(self, kind=None):
        return [
            m for m in self.sent
            if m["type"] == "signal" and (kind is None or m["kind"] == kind)
        ]


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeTransport(PeerTransport):
    """Scripted PeerTransport that records every call.

    Args:
        remote_id: Peer this transport connects to.
        supports_track_replacement: Advertised in-place replacement support.
        auto_connect: Report "connected" once both descriptions are set.
        fail_on: Method names that raise RuntimeError when called.
    """

    def __init__(
        self,
        remote_id,
        supports_track_replacement=True,
        auto_connect=False,
        fail_on=(),
    ):
        super().__init__()
        self.remote_id = remote_id
        self.supports_track_replacement = supports_track_replacement
        self.auto_connect = auto_connect
        self.fail_on = set(fail_on)
        self.calls = []
        self.local_description = None
        self.remote_description = None
        self.applied_candidates = []
        self.rejected_candidates = set()
        self.attached_tracks = []
        self.replaced_tracks = []
        # kind -> track currently sent in that slot (None once switched off)
        self.senders = {}
        self.data_channel_label = None
        self.channel_open = False
        self.sent_data = []
        self.close_count = 0
        self._state = "new"

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    @property
    def connection_state(self):
        return self._state

    @property
    def remote_description_set(self):
        return self.remote_description is not None

    async def create_offer(self):
        self._record("create_offer")
        return {"type": "offer", "sdp": f"offer-for-{self.remote_id}"}

    async def create_answer(self):
        self._record("create_answer")
        return {"type": "answer", "sdp": f"answer-for-{self.remote_id}"}

    async def set_local_description(self, description):
        self._record("set_local_description")
        self.local_description = description
        self._maybe_connect()
        return description

    async def set_remote_description(self, description):
        self._record("set_remote_description")
        self.remote_description = description
        self._maybe_connect()

    async def add_ice_candidate(self, candidate):
        self._record("add_ice_candidate")
        if candidate.get("candidate") in self.rejected_candidates:
            raise ValueError("malformed candidate")
        self.applied_candidates.append(candidate)

    def attach_local_tracks(self, tracks):
        for track in tracks:
            self.attached_tracks = [t for t in self.attached_tracks if t.kind != track.kind]
            self.attached_tracks.append(track)
            self.senders[track.kind] = track

    async def replace_outgoing_track(self, kind, track):
        self._record("replace_outgoing_track")
        if kind not in self.senders:
            return False
        self.senders[kind] = track
        self.replaced_tracks.append((kind, track))
        return True

    def open_data_channel(self, label):
        self.data_channel_label = label

    def send_data(self, data):
        if not self.channel_open:
            return False
        self.sent_data.append(data)
        return True

    async def close(self):
        self.close_count += 1
        self._state = "closed"

    def set_state(self, state):
        self._state = state
        self.emit("connectionstatechange", state)

    def _maybe_connect(self):
        if (
            self.auto_connect
            and self.local_description is not None
            and self.remote_description is not None
            and self._state != "connected"
        ):
            self.set_state("connected")


class TransportRecorder:
    """Transport factory that keeps every FakeTransport it creates."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created = {}

    def __call__(self, remote_id):
        transport = FakeTransport(remote_id, **self.kwargs)
        self.created[remote_id] = transport
        return transport


def candidate(n):
    return {"candidate": f"candidate:{n} 1 udp 1 10.0.0.{n} 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}


async def wait_until(predicate, timeout=2.0):
    """Poll until predicate() is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def drain(queue):
    """Return everything currently in an asyncio.Queue."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def signaling():
    return FakeSignaling()


@pytest.fixture
def transports():
    return TransportRecorder()
