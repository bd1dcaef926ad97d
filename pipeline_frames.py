"""Typed frames posted to the session controller's event queue.

Every channel event becomes one frame; the controller handles frames
strictly in arrival order on the event loop.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any


class FrameType(Enum):
    SERVER_CONTENT = auto()   # Parsed serverContent message from the channel
    CHANNEL_ERROR = auto()    # Channel failed mid-session
    CHANNEL_CLOSED = auto()   # Remote side closed cleanly


@dataclass
class PipelineFrame:
    type: FrameType
    data: Any = None
