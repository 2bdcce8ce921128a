"""Tests for SignalingClient."""

import json
from unittest import mock

import pytest
import websockets

from mesh_rtc.client.signaling import SignalingClient


class ScriptedConnection:
    """Async-iterable stand-in for a websockets client connection."""

    def __init__(self, frames, error=None):
        self.frames = list(frames)
        self.error = error
        self.sent = []
        self.send = mock.AsyncMock(side_effect=self.sent.append)
        self.close = mock.AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.frames:
            return self.frames.pop(0)
        if self.error is not None:
            raise self.error
        raise StopAsyncIteration


class RecordingOrchestrator:
    def __init__(self, fail_on=()):
        self.handled = []
        self.fail_on = fail_on

    async def handle_message(self, data):
        self.handled.append(data)
        if data["type"] in self.fail_on:
            raise RuntimeError("boom")


class TestRun:
    @pytest.mark.asyncio
    async def test_messages_delivered_in_order(self):
        client = SignalingClient("ws://relay")
        client.websocket = ScriptedConnection(
            [json.dumps({"type": "welcome", "id": "x"}), json.dumps({"type": "peers", "peers": []})]
        )
        orchestrator = RecordingOrchestrator()

        await client.run(orchestrator)

        assert [m["type"] for m in orchestrator.handled] == ["welcome", "peers"]

    @pytest.mark.asyncio
    async def test_bad_frames_and_handler_errors_do_not_stop_loop(self):
        client = SignalingClient("ws://relay")
        client.websocket = ScriptedConnection(
            [
                "garbage",
                json.dumps({"type": "peers", "peers": []}),
                json.dumps({"type": "peer-left", "id": "a"}),
            ]
        )
        orchestrator = RecordingOrchestrator(fail_on=("peers",))

        await client.run(orchestrator)

        assert [m["type"] for m in orchestrator.handled] == ["peers", "peer-left"]

    @pytest.mark.asyncio
    async def test_connection_loss_ends_run(self):
        client = SignalingClient("ws://relay")
        client.websocket = ScriptedConnection(
            [json.dumps({"type": "welcome", "id": "x"})],
            error=websockets.exceptions.ConnectionClosedError(None, None),
        )
        orchestrator = RecordingOrchestrator()

        await client.run(orchestrator)

        assert len(orchestrator.handled) == 1


class TestSend:
    @pytest.mark.asyncio
    async def test_send_encodes_json(self):
        client = SignalingClient("ws://relay")
        client.websocket = ScriptedConnection([])

        await client.send({"type": "join", "room_key": "r1", "display_name": ""})

        assert json.loads(client.websocket.sent[0]) == {
            "type": "join",
            "room_key": "r1",
            "display_name": "",
        }

    @pytest.mark.asyncio
    async def test_send_before_connect_is_dropped(self):
        client = SignalingClient("ws://relay")
        await client.send({"type": "join", "room_key": "r1"})
        await client.close()

    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self):
        client = SignalingClient("ws://relay")
        client.websocket = ScriptedConnection([])
        client.websocket.send.side_effect = websockets.exceptions.ConnectionClosedOK(None, None)

        await client.send({"type": "leave", "room_key": "r1"})

    @pytest.mark.asyncio
    async def test_connect_and_close(self):
        connection = ScriptedConnection([])
        with mock.patch(
            "mesh_rtc.client.signaling.websockets.connect",
            new=mock.AsyncMock(return_value=connection),
        ) as connect:
            client = SignalingClient("ws://relay:3001")
            await client.connect()
            await client.close()

        connect.assert_awaited_once_with("ws://relay:3001")
        connection.close.assert_awaited_once()
