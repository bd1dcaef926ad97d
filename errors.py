"""Exceptions raised by the live session engine.

Only connection-level failures end a session. Decode and translation
failures are handled where they happen and never reach the caller.
"""


class LiveSessionError(Exception):
    """Base class for live session failures."""


class MicrophonePermissionError(LiveSessionError, PermissionError):
    """The capture device could not be acquired."""


class ChannelOpenError(LiveSessionError, ConnectionError):
    """The remote session channel failed to open."""


class ChannelRuntimeError(LiveSessionError, ConnectionError):
    """The remote session channel failed mid-session."""


class SessionStateError(LiveSessionError, RuntimeError):
    """An operation was requested from a state that does not allow it."""


class AudioDecodeError(LiveSessionError, ValueError):
    """An inbound audio payload could not be decoded."""


class TranslationError(LiveSessionError):
    """Translation could not proceed for a whole batch."""


class PlaybackDeviceError(LiveSessionError, OSError):
    """The audio output device could not be opened."""
