"""Tests for wire message helpers."""

import json

import pytest

from mesh_rtc import protocol
from mesh_rtc.errors import MalformedSignal


class TestDecode:
    def test_text_and_bytes(self):
        frame = json.dumps({"type": "join", "room_key": "r1"})
        assert protocol.decode(frame)["room_key"] == "r1"
        assert protocol.decode(frame.encode("utf-8"))["room_key"] == "r1"

    @pytest.mark.parametrize(
        "frame",
        ["not json", "[]", "42", json.dumps({"room_key": "r1"}), b"\xff\xfe", None],
    )
    def test_rejects_non_messages(self, frame):
        assert protocol.decode(frame) is None


class TestParseSignal:
    def test_ignores_client_from(self):
        to, kind, payload = protocol.parse_signal(
            {"type": "signal", "from": "forged", "to": "b", "kind": "answer", "payload": {"sdp": "x"}}
        )
        assert (to, kind, payload) == ("b", "answer", {"sdp": "x"})

    @pytest.mark.parametrize(
        "data",
        [
            {"kind": "offer"},
            {"to": "b"},
            {"to": "", "kind": "offer"},
            {"to": "b", "kind": "hello"},
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(MalformedSignal):
            protocol.parse_signal({"type": "signal", **data})


def test_relayed_signal_shape():
    assert protocol.relayed_signal("a", "offer", {"sdp": "v=0"}) == {
        "type": "signal",
        "from": "a",
        "kind": "offer",
        "payload": {"sdp": "v=0"},
    }
