"""Tests for the peripheral wire format."""

import pytest

from peripheral.protocol import LineBuffer, decode_command, encode_command


def test_encode_is_compact_json_line():
    assert encode_command("NORMAL") == b'{"type":"NORMAL"}\n'
    assert encode_command("POSTURE_ALERT_L3") == b'{"type":"POSTURE_ALERT_L3"}\n'


def test_encode_rejects_empty():
    with pytest.raises(ValueError):
        encode_command("")


def test_decode():
    assert decode_command(b'{"type":"USER_AWAY_L1"}') == "USER_AWAY_L1"
    assert decode_command(b'{"type": 3}') is None
    assert decode_command(b"[1, 2]") is None
    assert decode_command(b"not json") is None
    assert decode_command(b"\xff\xfe") is None


def test_line_buffer_reassembles_chunks():
    buf = LineBuffer()
    assert buf.feed(b'{"type":') == []
    assert buf.feed(b'"ACK"}\r\n\n{"ty') == [b'{"type":"ACK"}']
    assert buf.feed(b'pe":"OK"}\n') == [b'{"type":"OK"}']


def test_line_buffer_drops_overlong_garbage():
    buf = LineBuffer(max_bytes=8)
    assert buf.feed(b"x" * 20) == []
    assert buf.feed(b"ok\n") == [b"ok"]
