#!/usr/bin/env python3
"""
Live voice conversation session:
  Microphone (PyAudio) -> Gemini Live websocket -> scheduled playback (PyAudio)
with a transcript built from the service's input/output transcription.

Everything runs on one asyncio loop. Device callbacks hop onto the loop
with call_soon_threadsafe; channel messages are posted to a queue and
handled strictly in arrival order by a single dispatch task.

State machine:
  idle -> connecting -> listening <-> processing -> speaking -> listening
  any  -> idle (stop)       any -> error (open failure or channel error)
"""

import asyncio
import logging
import time
from pathlib import Path

from audio_capture import AudioCapture
from audio_playback import AudioPlayback, OutputDevice
from config import DEFAULTS
from errors import (ChannelOpenError, ChannelRuntimeError, LiveSessionError,
                    MicrophonePermissionError, PlaybackDeviceError,
                    SessionStateError, TranslationError)
from event_bus import EventBus, EventType
from gemini_live import LiveChannel
from languages import build_system_instruction, load_document, parse_language_accent, voice_for
from pipeline_frames import FrameType, PipelineFrame
from session_state import Sender, SessionState, Status
from transcript_buffer import TranscriptAggregator
from translation_cache import TranslationCache, translate_messages

logger = logging.getLogger(__name__)

MIC_DENIED_MESSAGE = "Microphone access is required. Please allow microphone access and try again."
CONNECTION_ERROR_MESSAGE = "A connection error occurred. Please try again."
TRANSLATION_ERROR_MESSAGE = "Could not translate the conversation."

# Statuses in which the aggregator may drive transitions
_ACTIVE = (Status.LISTENING, Status.PROCESSING, Status.SPEAKING)


class LiveSession:
    """Session controller: owns the channel, both audio pipelines and the transcript.

    Args:
        api_key: Gemini API key (unused when channel_factory is given)
        config: overrides merged over config.DEFAULTS
        on_transcript: callback(list[Message]) with a full snapshot on every change
        on_status: callback(Status)
        on_error: callback(str) with a user-facing message
        channel_factory: () -> LiveChannel-like object
        capture_factory: (state) -> AudioCapture-like object
        output_device_factory: () -> OutputDevice-like object
        translator: TranslationCache to use for translate_transcript()
    """

    def __init__(self, api_key=None, config=None, on_transcript=None, on_status=None,
                 on_error=None, channel_factory=None, capture_factory=None,
                 output_device_factory=None, translator=None):
        self.api_key = api_key
        self.config = {**DEFAULTS, **(config or {})}
        self.on_transcript = on_transcript or (lambda messages: None)
        self.on_status = on_status or (lambda s: None)
        self.on_error = on_error or (lambda msg: None)

        self.state = SessionState()
        self.aggregator = TranscriptAggregator(
            self.state,
            on_update=self._publish_transcript,
            on_status=self._on_aggregator_status,
            debounce=self.config["processing_debounce"],
        )
        self.translator = translator or TranslationCache(
            api_key, model=self.config["translation_model"])

        self._channel_factory = channel_factory or self._default_channel
        self._capture_factory = capture_factory or self._default_capture
        self._output_device_factory = output_device_factory or self._default_output_device

        # Bumped by every teardown so a start() suspended in connect can tell
        # it was cancelled underneath.
        self.generation_id = 0

        self._channel = None
        self._capture = None
        self._playback = None
        self._frames_q = None
        self._reader_task = None
        self._dispatch_task = None
        self._send_tasks = set()
        self.send_failures = 0

        self.bus = None
        self._listeners = []  # (event_type, callback) re-registered on each session bus
        self._logged_final_ids = set()

    # ── Defaults ───────────────────────────────────────────────────

    def _default_channel(self):
        return LiveChannel(self.api_key, model=self.config["live_model"],
                           input_sample_rate=self.config["input_sample_rate"])

    def _default_capture(self, state):
        return AudioCapture(state, sample_rate=self.config["input_sample_rate"],
                            frame_size=self.config["capture_frame_size"])

    def _default_output_device(self):
        return OutputDevice(sample_rate=self.config["output_sample_rate"])

    # ── Observers ──────────────────────────────────────────────────

    @property
    def status(self) -> Status:
        return self.state.status

    @property
    def running(self) -> bool:
        return self._channel is not None

    def on(self, event_type, callback):
        """Subscribe to bus events for this and every later session."""
        self._listeners.append((event_type, callback))
        if self.bus is not None:
            self.bus.on(event_type, callback)

    def _emit(self, event_type, **payload):
        if self.bus is not None:
            self.bus.emit(event_type, **payload)

    def _set_status(self, status: Status):
        if self.state.status == status:
            return
        logger.info("Status: %s -> %s", self.state.status.value, status.value)
        self.state.status = status
        self._emit(EventType.STATUS, status=status.value)
        self.on_status(status)

    def _report_error(self, message: str, detail: str = ""):
        self._emit(EventType.ERROR, message=message, detail=detail)
        self.on_error(message)

    def _publish_transcript(self, messages):
        for message in messages:
            if message.is_final and message.id not in self._logged_final_ids:
                self._logged_final_ids.add(message.id)
                event = EventType.USER if message.sender == Sender.USER else EventType.MODEL
                self._emit(event, id=message.id, text=message.text)
        if self.bus is not None:
            self.bus.emit_ephemeral(EventType.TRANSCRIPT,
                                    messages=[m.to_dict() for m in messages])
        self.on_transcript(messages)

    def _on_aggregator_status(self, status: Status):
        current = self.state.status
        if current not in _ACTIVE:
            return
        if status == Status.PROCESSING and current != Status.LISTENING:
            return
        self._set_status(status)

    def _open_bus(self):
        session_id = time.strftime("%Y%m%d_%H%M%S")
        session_dir = None
        if self.config.get("save_session_log"):
            session_dir = Path(self.config["log_dir"]).expanduser() / session_id
        self.bus = EventBus("live_session", session_id, session_dir)
        try:
            self.bus.open()
        except OSError as e:
            logger.warning("Session log unavailable (%s), continuing without it", e)
        for event_type, callback in self._listeners:
            self.bus.on(event_type, callback)

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self, language_accent=None, voice=None):
        """Open the channel and arm both audio pipelines.

        Raises:
            SessionStateError: a session is already active
            ValueError: unknown language-accent code
            MicrophonePermissionError: capture device could not be acquired
            PlaybackDeviceError: output device could not be opened
            ChannelOpenError: the channel failed to open
        """
        if self.state.status not in (Status.IDLE, Status.ERROR):
            raise SessionStateError(f"Cannot start from {self.state.status.value}")

        language_accent = language_accent or self.config["language_accent"]
        parse_language_accent(language_accent)
        voice = voice or self.config.get("voice") or voice_for(language_accent)
        self.state.language_accent = language_accent
        self.state.voice = voice

        self._logged_final_ids.clear()
        self.state.reset_flags()
        self.aggregator.clear()
        self._open_bus()
        self._set_status(Status.CONNECTING)
        gen_id = self.generation_id

        capture = self._capture_factory(self.state)
        try:
            capture.open()
        except MicrophonePermissionError as e:
            logger.error("Microphone unavailable: %s", e)
            await self._teardown()
            self._fail(MIC_DENIED_MESSAGE, str(e))
            raise
        self._capture = capture

        device = self._output_device_factory()
        try:
            device.open()
        except OSError as e:
            logger.error("Playback device unavailable: %s", e)
            await self._teardown()
            self._fail(CONNECTION_ERROR_MESSAGE, str(e))
            raise PlaybackDeviceError(f"Audio output could not be opened: {e}") from e
        self._playback = AudioPlayback(self.state, device)

        instruction = build_system_instruction(
            language_accent, load_document(self.config.get("document_path")))
        channel = self._channel_factory()
        try:
            await channel.open(voice, instruction)
        except ChannelOpenError as e:
            if gen_id != self.generation_id:
                return
            logger.error("Channel open failed: %s", e)
            await self._teardown()
            self._fail(CONNECTION_ERROR_MESSAGE, str(e))
            raise

        if gen_id != self.generation_id:
            # stop() ran while we were connecting
            await channel.close()
            return

        self._channel = channel
        self._frames_q = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_channel(channel, self._frames_q))
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._frames_q))
        self._capture.start(self._send_frame)

        self._emit(EventType.SESSION_START, language_accent=language_accent, voice=voice,
                   model=getattr(channel, "model", ""))
        self._set_status(Status.LISTENING)

    async def stop(self):
        """Tear everything down and return to idle. Safe from any state, any number of times."""
        await self._teardown()
        self._set_status(Status.IDLE)
        self._close_bus()

    async def wait_closed(self):
        """Wait until the dispatch task ends (remote close, error or stop)."""
        task = self._dispatch_task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def _fail(self, message: str, detail: str = ""):
        self._set_status(Status.ERROR)
        self._report_error(message, detail)
        self._close_bus()

    def _close_bus(self):
        if self.bus is not None:
            self._emit(EventType.SESSION_END)
            self.bus.close()
            self.bus = None

    async def _teardown(self):
        """Release every resource exactly once. Synchronous up to the channel close."""
        self.generation_id += 1
        self.aggregator.cancel_timer()

        capture, self._capture = self._capture, None
        if capture is not None:
            capture.close()

        playback, self._playback = self._playback, None
        if playback is not None:
            stopped = len(self.state.live_sources)
            playback.shutdown()
            if stopped:
                logger.info("Stopped %d playing buffers", stopped)
        self.state.next_start_time = 0.0
        self.state.live_sources.clear()

        for task in list(self._send_tasks):
            task.cancel()
        self._send_tasks.clear()

        current = asyncio.current_task()
        for attr in ("_reader_task", "_dispatch_task"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._frames_q = None

        self.state.pending_input = ""
        self.state.pending_output = ""
        self.state.reset_flags()

        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    # ── Channel events ─────────────────────────────────────────────

    async def _read_channel(self, channel, queue):
        """Post every channel event to the dispatch queue."""
        try:
            async for content in channel.events():
                queue.put_nowait(PipelineFrame(type=FrameType.SERVER_CONTENT, data=content))
        except ChannelRuntimeError as e:
            queue.put_nowait(PipelineFrame(type=FrameType.CHANNEL_ERROR, data=e))
            return
        except Exception as e:
            logger.exception("Channel reader failed")
            queue.put_nowait(PipelineFrame(
                type=FrameType.CHANNEL_ERROR,
                data=ChannelRuntimeError(f"Channel reader failed: {type(e).__name__}: {e}")))
            return
        queue.put_nowait(PipelineFrame(type=FrameType.CHANNEL_CLOSED))

    async def _dispatch_loop(self, queue):
        while True:
            frame = await queue.get()
            if frame.type == FrameType.CHANNEL_ERROR:
                await self._handle_channel_error(frame.data)
                return
            if frame.type == FrameType.CHANNEL_CLOSED:
                logger.info("Channel closed by remote")
                await self.stop()
                return
            try:
                self.handle_server_content(frame.data)
            except LiveSessionError as e:
                logger.error("Dropped channel message: %s", e)

    def handle_server_content(self, content):
        """Apply one parsed channel message. Runs on the loop, in arrival order."""
        if content.input_text:
            self.aggregator.on_input_delta(content.input_text)
        if content.output_text:
            self.aggregator.on_output_delta(content.output_text)
        if content.turn_complete:
            self.aggregator.on_turn_complete()
        if self._playback is not None:
            for chunk in content.audio_chunks:
                self._playback.play(chunk)
        if content.interrupted:
            self._handle_interrupt()

    def _handle_interrupt(self):
        if self._playback is None:
            return
        stopped = self._playback.interrupt()
        logger.info("Barge-in: stopped %d queued buffers", stopped)
        self._emit(EventType.BARGE_IN, stopped=stopped)

    async def _handle_channel_error(self, error):
        logger.error("Channel error: %s", error)
        self._emit(EventType.ERROR, message=CONNECTION_ERROR_MESSAGE, detail=str(error))
        await self._teardown()
        self._set_status(Status.ERROR)
        self.on_error(CONNECTION_ERROR_MESSAGE)
        self._close_bus()

    # ── Capture ────────────────────────────────────────────────────

    def _send_frame(self, frame: bytes):
        """Fire-and-forget send of one capture frame."""
        channel = self._channel
        if channel is None:
            return
        task = asyncio.get_running_loop().create_task(channel.send_realtime_audio(frame))
        self._send_tasks.add(task)
        task.add_done_callback(self._on_send_done)

    def _on_send_done(self, task):
        self._send_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.send_failures += 1
            logger.warning("Audio frame send failed: %s", exc)

    # ── Controls ───────────────────────────────────────────────────

    def toggle_mute(self) -> bool:
        """Flip mute. Capture keeps running; frames are dropped while muted."""
        self.state.muted = not self.state.muted
        logger.info("Muted" if self.state.muted else "Unmuted")
        self._emit(EventType.MUTE, muted=self.state.muted)
        return self.state.muted

    def toggle_hold(self) -> bool:
        """Flip hold. Suspends the playback clock and capture sends; the channel stays open."""
        self.state.held = not self.state.held
        if self._playback is not None:
            self._playback.set_held(self.state.held)
        logger.info("On hold" if self.state.held else "Resumed")
        self._emit(EventType.HOLD, held=self.state.held)
        return self.state.held

    async def translate_transcript(self, target: str) -> int:
        """Translate every message into target; returns how many were translated.

        A batch-level failure is reported through on_error; the session keeps running.
        """
        parse_language_accent(target)
        source = self.state.language_accent
        try:
            count = await translate_messages(self.translator, self.state.messages, target, source)
        except TranslationError as e:
            logger.error("Transcript translation failed: %s", e)
            self._report_error(TRANSLATION_ERROR_MESSAGE, str(e))
            return 0
        if count:
            self._emit(EventType.TRANSLATION, target=target, source=source, count=count)
            self._publish_transcript(self.aggregator.snapshot())
        return count
