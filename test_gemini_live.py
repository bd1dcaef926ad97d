#!/usr/bin/env python3
"""Tests for the Gemini Live websocket channel.

websockets.connect is patched with a fake socket; nothing touches the network.

Run: python3 test_gemini_live.py
"""

import asyncio
import base64
import inspect
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import websockets

sys.path.insert(0, str(Path(__file__).parent))

from errors import ChannelOpenError, ChannelRuntimeError, LiveSessionError
from gemini_live import (
    LiveChannel,
    build_audio_message,
    build_setup_message,
    parse_server_content,
)

PASSED = 0
FAILED = 0
ERRORS = []


def test(name):
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        if asyncio.iscoroutinefunction(fn):
            asyncio.run(fn())
        else:
            fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} -- {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} -- {type(e).__name__}: {e}")


class FakeSocket:
    """Async-iterable websocket stand-in.

    `incoming` is replayed by iteration; `end_with` is raised after it
    runs out (None ends the iteration cleanly).
    """

    def __init__(self, setup_reply='{"setupComplete": {}}', incoming=None, end_with=None):
        self.setup_reply = setup_reply
        self.incoming = list(incoming or [])
        self.end_with = end_with
        self.sent = []
        self.close_count = 0

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        return self.setup_reply

    async def close(self):
        self.close_count += 1

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for raw in self.incoming:
            yield raw if isinstance(raw, str) else json.dumps(raw)
        if self.end_with is not None:
            raise self.end_with


def patch_connect(sock=None, side_effect=None):
    return patch("gemini_live.websockets.connect",
                 new=AsyncMock(return_value=sock, side_effect=side_effect))


async def open_channel(sock):
    channel = LiveChannel(api_key="test-key", connect_timeout=1.0)
    with patch_connect(sock):
        await channel.open("Kore", "Be helpful.")
    return channel


async def collect(channel):
    return [event async for event in channel.events()]


# ======================================================================
# Test Group 1: Message builders and parsing
# ======================================================================

@test("Setup message requests audio with both transcriptions")
def test_setup_message():
    msg = build_setup_message("gemini-live", "Puck", "Be nice.")["setup"]
    assert msg["model"] == "models/gemini-live"
    assert msg["generationConfig"]["responseModalities"] == ["AUDIO"]
    voice = msg["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
    assert voice["voiceName"] == "Puck"
    assert msg["systemInstruction"]["parts"][0]["text"] == "Be nice."
    assert "inputAudioTranscription" in msg
    assert "outputAudioTranscription" in msg


@test("Setup message keeps an already-qualified model name")
def test_setup_message_model_prefix():
    msg = build_setup_message("models/x", "Kore", "")
    assert msg["setup"]["model"] == "models/x"


@test("Audio message is base64 PCM tagged with the rate")
def test_audio_message():
    msg = build_audio_message(b"\x01\x02", 16000)["realtimeInput"]["audio"]
    assert base64.b64decode(msg["data"]) == b"\x01\x02"
    assert msg["mimeType"] == "audio/pcm;rate=16000"


@test("parse_server_content flattens every field")
def test_parse_server_content():
    parsed = parse_server_content({
        "inputTranscription": {"text": "Hi"},
        "outputTranscription": {"text": "Hello"},
        "turnComplete": True,
        "interrupted": True,
        "modelTurn": {"parts": [
            {"inlineData": {"mimeType": "audio/pcm", "data": "AAA="}},
            {"text": "ignored"},
            {"inlineData": {"data": "BBB="}},
        ]},
    })
    assert parsed.input_text == "Hi"
    assert parsed.output_text == "Hello"
    assert parsed.turn_complete is True
    assert parsed.interrupted is True
    assert parsed.audio_chunks == ["AAA=", "BBB="]


@test("parse_server_content defaults missing fields")
def test_parse_server_content_empty():
    parsed = parse_server_content({})
    assert parsed.input_text == ""
    assert parsed.output_text == ""
    assert parsed.turn_complete is False
    assert parsed.interrupted is False
    assert parsed.audio_chunks == []


@test("parse_server_content treats wrongly typed fields as absent")
def test_parse_server_content_malformed():
    parsed = parse_server_content({
        "inputTranscription": "not an object",
        "outputTranscription": {"text": 42},
        "turnComplete": "yes",
        "modelTurn": {"parts": None},
    })
    assert parsed.input_text == ""
    assert parsed.output_text == ""
    assert parsed.turn_complete is False
    assert parsed.audio_chunks == []

    parsed = parse_server_content({"modelTurn": {"parts": [
        None, "text", {"inlineData": None}, {"inlineData": {"data": 7}},
        {"inlineData": {"data": "AAA="}},
    ]}})
    assert parsed.audio_chunks == ["AAA="]


# ======================================================================
# Test Group 2: Opening
# ======================================================================

@test("open() sends setup first and waits for setupComplete")
async def test_open_success():
    sock = FakeSocket()
    channel = await open_channel(sock)
    assert channel.is_open
    assert len(sock.sent) == 1
    assert sock.sent[0]["setup"]["generationConfig"]["speechConfig"]["voiceConfig"][
        "prebuiltVoiceConfig"]["voiceName"] == "Kore"


@test("Installed websockets.connect takes additional_headers")
def test_connect_signature():
    params = inspect.signature(websockets.connect).parameters
    assert "additional_headers" in params


@test("open() passes the API key header")
async def test_open_headers():
    sock = FakeSocket()
    channel = LiveChannel(api_key="secret", connect_timeout=1.0)
    with patch_connect(sock) as connect:
        await channel.open("Kore", "")
    assert connect.call_args.kwargs["additional_headers"] == {"x-goog-api-key": "secret"}


@test("Refused connection raises ChannelOpenError")
async def test_open_refused():
    channel = LiveChannel(api_key="k", connect_timeout=1.0)
    with patch_connect(side_effect=OSError("connection refused")):
        try:
            await channel.open("Kore", "")
        except ChannelOpenError as e:
            assert isinstance(e, LiveSessionError)
        else:
            raise AssertionError("expected ChannelOpenError")
    assert not channel.is_open


@test("Unexpected setup reply closes the socket and raises")
async def test_open_bad_reply():
    sock = FakeSocket(setup_reply='{"error": {"code": 403}}')
    channel = LiveChannel(api_key="k", connect_timeout=1.0)
    with patch_connect(sock):
        try:
            await channel.open("Kore", "")
        except ChannelOpenError:
            pass
        else:
            raise AssertionError("expected ChannelOpenError")
    assert sock.close_count == 1
    assert not channel.is_open


# ======================================================================
# Test Group 3: Traffic
# ======================================================================

@test("send_realtime_audio writes a realtimeInput message")
async def test_send_audio():
    sock = FakeSocket()
    channel = await open_channel(sock)
    await channel.send_realtime_audio(b"\x00\x00")
    assert "realtimeInput" in sock.sent[-1]


@test("Sending after close is a silent no-op")
async def test_send_after_close():
    sock = FakeSocket()
    channel = await open_channel(sock)
    await channel.close()
    await channel.send_realtime_audio(b"\x00\x00")
    assert len(sock.sent) == 1  # setup only


@test("events() yields serverContent in order and skips the rest")
async def test_events_order():
    sock = FakeSocket(incoming=[
        {"serverContent": {"inputTranscription": {"text": "a"}}},
        "not json",
        {"goAway": {"timeLeft": "10s"}},
        {"usageMetadata": {}},
        {"serverContent": {"turnComplete": True}},
    ])
    channel = await open_channel(sock)
    events = await collect(channel)
    assert [e.input_text for e in events] == ["a", ""]
    assert events[1].turn_complete is True


@test("Malformed messages are skipped and the stream keeps going")
async def test_events_malformed_skipped():
    sock = FakeSocket(incoming=[
        "[1, 2, 3]",
        {"serverContent": None},
        {"serverContent": "garbage"},
        {"goAway": "soon"},
        {"serverContent": {"modelTurn": {"parts": None}}},
        {"serverContent": {"inputTranscription": {"text": "still here"}}},
    ])
    channel = await open_channel(sock)
    events = await collect(channel)
    assert [e.input_text for e in events] == ["", "still here"]
    assert events[0].audio_chunks == []


@test("Clean remote close ends iteration")
async def test_events_clean_close():
    sock = FakeSocket(end_with=websockets.exceptions.ConnectionClosedOK(None, None))
    channel = await open_channel(sock)
    assert await collect(channel) == []


@test("Abnormal remote close raises ChannelRuntimeError")
async def test_events_abnormal_close():
    sock = FakeSocket(
        incoming=[{"serverContent": {"outputTranscription": {"text": "x"}}}],
        end_with=websockets.exceptions.ConnectionClosedError(None, None),
    )
    channel = await open_channel(sock)
    received = []
    try:
        async for event in channel.events():
            received.append(event)
    except ChannelRuntimeError:
        pass
    else:
        raise AssertionError("expected ChannelRuntimeError")
    assert len(received) == 1


@test("close() is idempotent")
async def test_close_idempotent():
    sock = FakeSocket()
    channel = await open_channel(sock)
    await channel.close()
    await channel.close()
    assert sock.close_count == 1
    assert not channel.is_open


# ======================================================================
# Run all tests
# ======================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("Gemini Live Channel Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print(f"\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
