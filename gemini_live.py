#!/usr/bin/env python3
"""
Gemini Live API channel over a raw websocket.

Opens a bidirectional session configured for audio responses with both
input and output transcription, streams microphone PCM up, and yields
parsed serverContent messages back to the session controller.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field

import websockets

from errors import ChannelOpenError, ChannelRuntimeError

logger = logging.getLogger(__name__)

LIVE_URL = ("wss://generativelanguage.googleapis.com/ws/"
            "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent")
LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"
CONNECT_TIMEOUT = 10.0


@dataclass
class ServerContent:
    """One inbound serverContent message, flattened.

    audio_chunks holds the base64 inlineData payloads untouched; they are
    decoded by the playback stage.
    """
    input_text: str = ""
    output_text: str = ""
    turn_complete: bool = False
    interrupted: bool = False
    audio_chunks: list = field(default_factory=list)


def build_setup_message(model: str, voice: str, system_instruction: str) -> dict:
    """First message on the socket: session configuration."""
    return {
        "setup": {
            "model": model if model.startswith("models/") else f"models/{model}",
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
                },
            },
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "inputAudioTranscription": {},
            "outputAudioTranscription": {},
        }
    }


def build_audio_message(pcm: bytes, sample_rate: int) -> dict:
    return {
        "realtimeInput": {
            "audio": {
                "data": base64.b64encode(pcm).decode("ascii"),
                "mimeType": f"audio/pcm;rate={sample_rate}",
            }
        }
    }


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _as_text(value) -> str:
    return value if isinstance(value, str) else ""


def parse_server_content(content: dict) -> ServerContent:
    """Flatten a serverContent payload into a ServerContent.

    Fields of the wrong type are treated as absent.
    """
    content = _as_dict(content)
    parsed = ServerContent()
    parsed.input_text = _as_text(_as_dict(content.get("inputTranscription")).get("text"))
    parsed.output_text = _as_text(_as_dict(content.get("outputTranscription")).get("text"))
    parsed.turn_complete = content.get("turnComplete") is True
    parsed.interrupted = content.get("interrupted") is True

    parts = _as_dict(content.get("modelTurn")).get("parts")
    if not isinstance(parts, list):
        parts = []
    for part in parts:
        data = _as_dict(_as_dict(part).get("inlineData")).get("data")
        if data and isinstance(data, str):
            parsed.audio_chunks.append(data)
    return parsed


class LiveChannel:
    """Single-owner handle on one Live API websocket session."""

    def __init__(self, api_key, model=LIVE_MODEL, url=LIVE_URL,
                 input_sample_rate=16000, connect_timeout=CONNECT_TIMEOUT):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.input_sample_rate = input_sample_rate
        self.connect_timeout = connect_timeout
        self.ws = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self._closed

    async def open(self, voice: str, system_instruction: str):
        """Connect, send setup and wait for setupComplete.

        Raises:
            ChannelOpenError: connection refused, timed out, or setup rejected
        """
        try:
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    additional_headers={"x-goog-api-key": self.api_key},
                    ping_interval=20,
                    max_size=None,
                ),
                timeout=self.connect_timeout,
            )
            await self.ws.send(json.dumps(
                build_setup_message(self.model, voice, system_instruction)))
            raw = await asyncio.wait_for(self.ws.recv(), timeout=self.connect_timeout)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            await self.close()
            raise ChannelOpenError(f"Could not open live session: {e}") from e

        try:
            reply = json.loads(raw)
        except json.JSONDecodeError:
            reply = {}
        if "setupComplete" not in reply:
            await self.close()
            raise ChannelOpenError(f"Unexpected setup reply: {str(raw)[:200]}")

        logger.info("Live channel open (model=%s, voice=%s)", self.model, voice)

    async def send_realtime_audio(self, pcm: bytes):
        """Send one capture frame. No-op once the channel is closed."""
        if not self.is_open:
            logger.debug("Dropping audio frame, channel closed")
            return
        await self.ws.send(json.dumps(build_audio_message(pcm, self.input_sample_rate)))

    async def events(self):
        """Yield ServerContent in arrival order until the socket closes.

        A clean close ends the iteration. An abnormal close raises
        ChannelRuntimeError unless close() was already called locally.
        """
        if self.ws is None:
            return
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON message from live channel")
                    continue
                if not isinstance(data, dict):
                    logger.warning("Ignoring non-object message from live channel")
                    continue

                if "serverContent" in data:
                    if not isinstance(data["serverContent"], dict):
                        logger.warning("Ignoring malformed serverContent: %s",
                                       str(data["serverContent"])[:200])
                        continue
                    yield parse_server_content(data["serverContent"])
                elif "goAway" in data:
                    logger.info("Live channel: server going away (%s)",
                                _as_dict(data["goAway"]).get("timeLeft", "?"))
                else:
                    logger.debug("Live channel: ignoring %s", list(data.keys()))
        except websockets.exceptions.ConnectionClosedOK:
            return
        except websockets.exceptions.ConnectionClosedError as e:
            if self._closed:
                return
            raise ChannelRuntimeError(f"Live channel closed abnormally: {e}") from e

    async def close(self):
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        ws, self.ws = self.ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.warning("Live channel close error: %s", e)
        logger.info("Live channel closed")
