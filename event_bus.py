"""
Event bus for the live session: outward observers plus a per-session log.

The controller emits every session event here. In-process callbacks deliver
them to the surrounding application (transcript view, status light, error
banner). Durable events are also appended to <session_dir>/events.jsonl;
high-frequency ones (full transcript snapshots) go through emit_ephemeral
and never touch disk.

Writer atomicity: POSIX O_APPEND guarantees atomic writes under PIPE_BUF (4096 bytes).
Each JSON line + newline stays under that limit.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

# POSIX PIPE_BUF: lines must stay under this for atomic appends
_PIPE_BUF = 4096

# Core fields that are not part of the payload
_CORE_FIELDS = {"ts", "src", "type", "sid"}


class EventType(str, Enum):
    """All event types in the bus catalog."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    STATUS = "status"
    TRANSCRIPT = "transcript"
    USER = "user"
    MODEL = "model"
    BARGE_IN = "barge_in"
    MUTE = "mute"
    HOLD = "hold"
    TRANSLATION = "translation"
    ERROR = "error"


@dataclass
class BusEvent:
    """A single event on the bus."""
    ts: float
    src: str
    type: str
    sid: str
    payload: dict = field(default_factory=dict)

    def __init__(self, ts: float, src: str, type: str, sid: str, **kwargs):
        self.ts = ts
        self.src = src
        self.type = type
        self.sid = sid
        self.payload = kwargs

    def to_json_line(self) -> str:
        """Serialize to a single JSON line with trailing newline.

        Truncates payload if the line would exceed PIPE_BUF.
        """
        data = {"ts": self.ts, "src": self.src, "type": self.type,
                "sid": self.sid, **self.payload}
        line = json.dumps(data, separators=(',', ':'), default=str) + "\n"

        if len(line.encode()) > _PIPE_BUF:
            truncated = dict(data)
            for key, val in list(truncated.items()):
                if key in _CORE_FIELDS:
                    continue
                if isinstance(val, str) and len(val) > 200:
                    truncated[key] = val[:200] + "...[truncated]"
            line = json.dumps(truncated, separators=(',', ':'), default=str) + "\n"

            # Still too large (lists, nested dicts): keep the core only
            if len(line.encode()) > _PIPE_BUF:
                minimal = {k: data[k] for k in _CORE_FIELDS}
                minimal["_truncated"] = True
                line = json.dumps(minimal, separators=(',', ':')) + "\n"

        return line


class EventBusWriter:
    """Append-only writer for the bus JSONL file."""

    def __init__(self, bus_path: Path):
        self._bus_path = bus_path
        self._file = None

    def open(self):
        self._bus_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._bus_path, "a")

    def write(self, evt: BusEvent):
        if self._file is None:
            self.open()
        self._file.write(evt.to_json_line())
        self._file.flush()

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


class EventBus:
    """In-process callbacks with an optional JSONL session log.

    Usage:
        bus = EventBus("live_session", session_id, session_dir)
        bus.open()
        bus.on("status", on_status)                 # Register listener
        bus.emit("status", status="listening")      # Write + callbacks
        bus.emit_ephemeral("transcript", messages=[...])  # Callbacks only
        bus.close()
    """

    def __init__(self, src: str, sid: str, session_dir: Path | None = None):
        self._src = src
        self._sid = sid
        self._session_dir = session_dir
        self._writer: EventBusWriter | None = None
        self._callbacks: dict[str, list[Callable]] = {}  # type -> [callback]

    @property
    def sid(self) -> str:
        return self._sid

    @property
    def bus_path(self) -> Path | None:
        if self._session_dir is None:
            return None
        return self._session_dir / "events.jsonl"

    def open(self):
        """Open the session log. No-op without a session directory."""
        if self.bus_path is None or self._writer is not None:
            return
        self._writer = EventBusWriter(self.bus_path)
        self._writer.open()

    def close(self):
        if self._writer:
            self._writer.close()
            self._writer = None

    def on(self, event_type: str, callback: Callable):
        """Register an in-process callback.

        Args:
            event_type: Event type to listen for, or "*" for all events.
            callback: Called with BusEvent as argument.
        """
        if isinstance(event_type, Enum):
            event_type = event_type.value
        self._callbacks.setdefault(event_type, []).append(callback)

    def _fire_callbacks(self, evt: BusEvent):
        for cb_type in (evt.type, "*"):
            for cb in self._callbacks.get(cb_type, []):
                try:
                    cb(evt)
                except Exception as e:
                    logger.error("Bus callback error for %s: %s", evt.type, e)

    def _make_event(self, event_type, payload) -> BusEvent:
        event_type = event_type.value if isinstance(event_type, Enum) else event_type
        return BusEvent(ts=time.time(), src=self._src, type=event_type,
                        sid=self._sid, **payload)

    def emit(self, event_type, **payload):
        """Write event to the session log and fire in-process callbacks."""
        evt = self._make_event(event_type, payload)
        if self._writer:
            try:
                self._writer.write(evt)
            except OSError as e:
                logger.error("Session log write error: %s", e)
        self._fire_callbacks(evt)

    def emit_ephemeral(self, event_type, **payload):
        """Fire callbacks only, skip disk write. For high-frequency events."""
        self._fire_callbacks(self._make_event(event_type, payload))
