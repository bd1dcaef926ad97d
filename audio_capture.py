"""Microphone capture pipeline.

PyAudio delivers fixed-size float32 frames on its own thread. Each frame is
converted to 16-bit PCM and handed to the event loop with
call_soon_threadsafe; the loop side drops it while the session is muted or
held, otherwise forwards it to the frame sink. The device keeps running
while muted so toggling takes effect on the next frame.
"""

import asyncio
import logging

import numpy as np

from errors import MicrophonePermissionError

logger = logging.getLogger(__name__)

CHANNELS = 1


def float_to_pcm16(samples) -> bytes:
    """Convert float samples in [-1.0, 1.0] to little-endian int16 bytes."""
    samples = np.asarray(samples, dtype=np.float32)
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


class AudioCapture:
    """Mono float32 input stream gated by the session's mute/hold flags.

    Args:
        state: SessionState shared with the controller (muted/held are read here)
        sample_rate: input rate in Hz
        frame_size: samples per device callback
        pa: optional pyaudio.PyAudio instance (created on open() otherwise)
    """

    def __init__(self, state, sample_rate=16000, frame_size=4096, pa=None):
        self.state = state
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self._pa = pa
        self._owns_pa = pa is None
        self._stream = None
        self._loop = None
        self._on_frame = None

        self.frames_captured = 0
        self.frames_sent = 0
        self.frames_dropped = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self):
        """Acquire the input device. Frames are discarded until start().

        Raises:
            MicrophonePermissionError: the device is missing or access was denied
        """
        import pyaudio

        self._loop = asyncio.get_running_loop()
        try:
            if self._pa is None:
                self._pa = pyaudio.PyAudio()
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=CHANNELS,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frame_size,
                stream_callback=self._stream_callback,
            )
        except OSError as e:
            self._release_pa()
            raise MicrophonePermissionError(
                f"Microphone access is required but could not be acquired: {e}") from e
        logger.info("Capture device open (%d Hz, %d samples/frame)",
                    self.sample_rate, self.frame_size)

    def start(self, on_frame):
        """Begin forwarding frames to on_frame(pcm_bytes) on the event loop."""
        self._on_frame = on_frame

    def close(self):
        """Stop forwarding and release the device. Safe to call twice."""
        self._on_frame = None
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning("Capture stream close error: %s", e)
            logger.info("Capture device released (%d captured, %d sent, %d dropped)",
                        self.frames_captured, self.frames_sent, self.frames_dropped)
        self._release_pa()

    def _release_pa(self):
        if self._owns_pa and self._pa is not None:
            self._pa.terminate()
            self._pa = None

    def _stream_callback(self, in_data, frame_count, time_info, status):
        """PortAudio thread: convert and hop onto the event loop."""
        import pyaudio

        frame = float_to_pcm16(np.frombuffer(in_data, dtype=np.float32))
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.deliver, frame)
        return (None, pyaudio.paContinue)

    def deliver(self, frame: bytes):
        """Event loop side: gate on mute/hold, then forward."""
        self.frames_captured += 1
        if self._on_frame is None:
            return
        if self.state.muted or self.state.held:
            self.frames_dropped += 1
            return
        self.frames_sent += 1
        self._on_frame(frame)
