"""Tests for the transport adapter and its aiortc implementation."""

import asyncio

import pytest

from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from conftest import FakeTransport, wait_until
from mesh_rtc.client.transport import (
    AiortcPeerTransport,
    AiortcTransportFactory,
    parse_candidate,
)
from mesh_rtc.config import IceServerConfig


class TestParseCandidate:
    def test_parses_wire_candidate(self):
        ice = parse_candidate(
            {
                "candidate": "candidate:1 1 udp 2130706431 192.168.1.5 54321 typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            }
        )
        assert ice.ip == "192.168.1.5"
        assert ice.port == 54321
        assert ice.type == "host"
        assert ice.sdpMid == "0"
        assert ice.sdpMLineIndex == 0

    def test_end_of_candidates(self):
        assert parse_candidate({"candidate": ""}) is None
        assert parse_candidate({}) is None


class TestEmit:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        transport = FakeTransport("x")
        seen = []

        @transport.on("message")
        def on_sync(data):
            seen.append(("sync", data))

        async def on_async(data):
            seen.append(("async", data))

        transport.on("message", on_async)
        transport.emit("message", "hello")

        assert seen == [("sync", "hello")]
        await wait_until(lambda: len(seen) == 2)
        assert seen[1] == ("async", "hello")

    def test_unregistered_event_is_noop(self):
        FakeTransport("x").emit("track", object())


class TestAiortcPeerTransport:
    @pytest.mark.asyncio
    async def test_offer_answer_exchange(self):
        caller = AiortcPeerTransport()
        callee = AiortcPeerTransport()
        try:
            caller.open_data_channel("chat")
            assert not callee.remote_description_set

            offer = await caller.set_local_description(await caller.create_offer())
            assert offer["type"] == "offer"
            assert "m=application" in offer["sdp"]

            await callee.set_remote_description(offer)
            assert callee.remote_description_set
            answer = await callee.set_local_description(await callee.create_answer())
            assert answer["type"] == "answer"

            await caller.set_remote_description(answer)
            assert caller.remote_description_set
        finally:
            await caller.close()
            await callee.close()

    @pytest.mark.asyncio
    async def test_send_data_before_open(self):
        transport = AiortcPeerTransport()
        try:
            assert transport.send_data("hi") is False
            transport.open_data_channel("chat")
            assert transport.send_data("hi") is False
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_replace_without_senders(self):
        transport = AiortcPeerTransport()
        try:
            assert await transport.replace_outgoing_track("video", None) is False
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_close_reports_closed_state(self):
        transport = AiortcPeerTransport()
        states = []
        transport.on("connectionstatechange", states.append)
        await transport.close()
        await asyncio.sleep(0)
        assert transport.connection_state == "closed"
        assert states[-1] == "closed"


class TestTransportFactory:
    @pytest.mark.asyncio
    async def test_factory_shares_media_relay(self):
        factory = AiortcTransportFactory([IceServerConfig(urls=["stun:stun.example.org"])])
        first = factory("a")
        second = factory("b")
        try:
            assert first is not second
            assert first.media_relay is factory.media_relay
            assert second.media_relay is factory.media_relay
        finally:
            await first.close()
            await second.close()


class TestOutgoingTracks:
    """One outgoing slot per kind, kept across track swaps."""

    @pytest.mark.asyncio
    async def test_switch_off_and_back_on(self):
        transport = AiortcPeerTransport()
        try:
            transport.attach_local_tracks([AudioStreamTrack()])

            assert await transport.replace_outgoing_track("audio", None) is True
            assert await transport.replace_outgoing_track("audio", AudioStreamTrack()) is True

            senders = [t.sender for t in transport.pc.getTransceivers() if t.kind == "audio"]
            assert len(senders) == 1
            assert senders[0].track is not None
            assert senders[0].track.kind == "audio"
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_unsent_kind_is_not_replaced(self):
        transport = AiortcPeerTransport()
        try:
            transport.attach_local_tracks([AudioStreamTrack()])
            assert await transport.replace_outgoing_track("video", VideoStreamTrack()) is False
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_attach_same_kind_reuses_slot(self):
        transport = AiortcPeerTransport()
        try:
            transport.attach_local_tracks([AudioStreamTrack()])
            transport.attach_local_tracks([AudioStreamTrack()])
            transport.attach_local_tracks([VideoStreamTrack()])

            kinds = sorted(t.kind for t in transport.pc.getTransceivers())
            assert kinds == ["audio", "video"]
        finally:
            await transport.close()
