"""Gapless playback of model audio.

OutputDevice is a small software mixer on top of a PyAudio callback stream.
Its clock (current_time) is the number of frames rendered divided by the
sample rate, so it only moves while audio is being rendered: suspending the
device freezes the clock and every scheduled buffer with it.

AudioPlayback is the pipeline stage. It decodes inbound PCM16 payloads and
schedules them back to back on the device clock:

    start = max(device.current_time, state.next_start_time)
    state.next_start_time = end of the buffer as actually scheduled

The cursor is taken from the scheduled start frame, so a render that slips
in between reading the clock and scheduling cannot make buffers overlap.

An interrupt (barge-in) stops every live buffer and resets next_start_time
to zero. Hold suspends the device without discarding anything.
"""

import asyncio
import base64
import binascii
import logging
import threading

import numpy as np

from errors import AudioDecodeError

logger = logging.getLogger(__name__)

CHANNELS = 1
FRAMES_PER_BUFFER = 1024


def decode_pcm16(payload, sample_rate: int) -> np.ndarray:
    """Decode a base64 (str) or raw (bytes) PCM16 mono payload to float32.

    Raises:
        AudioDecodeError: bad base64, empty payload, or odd byte count
    """
    if isinstance(payload, str):
        try:
            payload = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AudioDecodeError(f"Invalid base64 audio payload: {e}") from e
    if not payload:
        raise AudioDecodeError("Empty audio payload")
    if len(payload) % 2:
        raise AudioDecodeError(f"PCM16 payload has odd length {len(payload)}")
    return np.frombuffer(payload, dtype="<i2").astype(np.float32) / 32768.0


class ScheduledSource:
    """A buffer queued on the device at a fixed start time.

    on_ended fires on the event loop after natural completion only.
    """

    def __init__(self, samples: np.ndarray, start_frame: int, sample_rate: int):
        self.samples = samples
        self.start_frame = start_frame
        self.sample_rate = sample_rate
        self.stopped = False
        self.ended = False
        self.on_ended = None

    @property
    def start_time(self) -> float:
        return self.start_frame / self.sample_rate

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)

    def stop(self):
        self.stopped = True

    def _fire_ended(self):
        if self.stopped:
            return
        self.ended = True
        if self.on_ended:
            self.on_ended(self)


class OutputDevice:
    """Mono float32 output stream with a suspendable, frame-counted clock.

    Args:
        sample_rate: output rate in Hz
        pa: optional pyaudio.PyAudio instance (created on open() otherwise)
    """

    def __init__(self, sample_rate=24000, pa=None):
        self.sample_rate = sample_rate
        self._pa = pa
        self._owns_pa = pa is None
        self._stream = None
        self._loop = None
        self._lock = threading.Lock()
        self._sources = []
        self._frames_rendered = 0
        self.suspended = False

    @property
    def current_time(self) -> float:
        return self._frames_rendered / self.sample_rate

    def open(self):
        import pyaudio

        self._loop = asyncio.get_running_loop()
        if self._pa is None:
            self._pa = pyaudio.PyAudio()
        self._stream = self._pa.open(
            format=pyaudio.paFloat32,
            channels=CHANNELS,
            rate=self.sample_rate,
            output=True,
            frames_per_buffer=FRAMES_PER_BUFFER,
            stream_callback=self._stream_callback,
        )
        logger.info("Playback device open (%d Hz)", self.sample_rate)

    def close(self):
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning("Playback stream close error: %s", e)
        if self._owns_pa and self._pa is not None:
            self._pa.terminate()
            self._pa = None
        with self._lock:
            self._sources.clear()

    def schedule(self, samples: np.ndarray, when: float) -> ScheduledSource:
        """Queue samples to start at device time `when` (seconds)."""
        with self._lock:
            start_frame = max(int(round(when * self.sample_rate)), self._frames_rendered)
            source = ScheduledSource(samples, start_frame, self.sample_rate)
            self._sources.append(source)
        return source

    def suspend(self):
        self.suspended = True

    def resume(self):
        self.suspended = False

    def render(self, frame_count: int) -> np.ndarray:
        """Mix the next frame_count samples and advance the clock.

        While suspended, returns silence and the clock stays put.
        """
        out = np.zeros(frame_count, dtype=np.float32)
        if self.suspended:
            return out

        finished = []
        with self._lock:
            window_start = self._frames_rendered
            window_end = window_start + frame_count
            remaining = []
            for source in self._sources:
                if source.stopped:
                    continue
                lo = max(source.start_frame, window_start)
                hi = min(source.end_frame, window_end)
                if hi > lo:
                    out[lo - window_start:hi - window_start] += \
                        source.samples[lo - source.start_frame:hi - source.start_frame]
                if source.end_frame <= window_end:
                    finished.append(source)
                else:
                    remaining.append(source)
            self._sources = remaining
            self._frames_rendered = window_end

        for source in finished:
            self._notify_ended(source)
        np.clip(out, -1.0, 1.0, out=out)
        return out

    def _notify_ended(self, source):
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(source._fire_ended)
        else:
            source._fire_ended()

    def _stream_callback(self, in_data, frame_count, time_info, status):
        import pyaudio

        return (self.render(frame_count).tobytes(), pyaudio.paContinue)


class AudioPlayback:
    """Schedules inbound model audio on an OutputDevice.

    state.next_start_time and state.live_sources are only written here,
    from the event loop.
    """

    def __init__(self, state, device: OutputDevice):
        self.state = state
        self.device = device
        self.chunks_played = 0
        self.chunks_skipped = 0

    def play(self, payload) -> ScheduledSource | None:
        """Decode and schedule one payload. Bad chunks are logged and skipped."""
        try:
            samples = decode_pcm16(payload, self.device.sample_rate)
        except AudioDecodeError as e:
            self.chunks_skipped += 1
            logger.warning("Skipping undecodable audio chunk: %s", e)
            return None

        start = max(self.device.current_time, self.state.next_start_time)
        source = self.device.schedule(samples, start)
        source.on_ended = self._on_source_ended
        # The device may push the start later if it rendered in between
        self.state.next_start_time = source.end_frame / source.sample_rate
        self.state.live_sources.add(source)
        self.chunks_played += 1
        return source

    def _on_source_ended(self, source):
        self.state.live_sources.discard(source)

    def interrupt(self) -> int:
        """Stop every live buffer and reset the clock cursor. Returns count stopped."""
        stopped = len(self.state.live_sources)
        for source in list(self.state.live_sources):
            source.stop()
        self.state.live_sources.clear()
        self.state.next_start_time = 0.0
        return stopped

    def set_held(self, held: bool):
        if held:
            self.device.suspend()
        else:
            self.device.resume()

    def shutdown(self):
        self.interrupt()
        self.device.resume()
        self.device.close()
