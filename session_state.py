"""Session record shared by the live pipelines.

One SessionState exists per active conversation. The controller owns it and
hands the same instance to the capture, playback and transcript stages, so
there is no module-level mutable state anywhere in the engine.

All fields are touched from the event loop thread only.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Status(str, Enum):
    """Session controller states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ERROR = "error"


class Sender(str, Enum):
    USER = "user"
    MODEL = "model"


def _new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Message:
    """One transcript entry.

    Text is rewritten in place while the message is pending. Once is_final
    flips to True it never goes back. translations maps a language-accent
    code to translated text and is filled on demand.
    """
    sender: Sender
    text: str = ""
    is_final: bool = False
    id: str = field(default_factory=_new_message_id)
    translations: dict = field(default_factory=dict)

    def finalize(self):
        self.is_final = True

    def snapshot(self) -> "Message":
        """Detached copy for publishing to observers."""
        return Message(sender=self.sender, text=self.text, is_final=self.is_final,
                       id=self.id, translations=dict(self.translations))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender": self.sender.value,
            "text": self.text,
            "is_final": self.is_final,
            "translations": dict(self.translations),
        }


@dataclass
class SessionState:
    """Per-session mutable fields, passed by reference into each pipeline."""
    status: Status = Status.IDLE
    muted: bool = False
    held: bool = False
    language_accent: str = "english-us"
    voice: str = "Kore"

    # Transcript aggregation
    messages: list = field(default_factory=list)
    pending_input: str = ""
    pending_output: str = ""
    debounce_handle: Optional[Any] = field(default=None, repr=False)

    # Playback scheduling (seconds on the output device clock)
    next_start_time: float = 0.0
    live_sources: set = field(default_factory=set, repr=False)

    def reset_flags(self):
        self.muted = False
        self.held = False

    def clear_transcript(self):
        self.messages.clear()
        self.pending_input = ""
        self.pending_output = ""
