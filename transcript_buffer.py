"""Transcript aggregation for the live session.

Merges two streaming delta sources into one ordered message log:
- input transcription (what the service heard the user say)
- output transcription (what the model is saying)

Rules:
- At most one pending (non-final) message per sender sits at the tail.
- A delta for that sender rewrites its text with the accumulated buffer.
- A delta from the other sender, or turn complete, finalizes pending messages.
- Every mutation publishes a full snapshot through on_update.

Status signals (processing/speaking/listening) are reported through
on_status; the session controller decides what to do with them.
"""

import asyncio
import logging
from typing import Callable, Optional

from session_state import Message, Sender, SessionState, Status

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 1.2  # seconds of input silence before "processing"


class TranscriptAggregator:
    """Builds the transcript in state.messages from streaming deltas.

    Args:
        state: SessionState owning messages and the pending text buffers
        on_update: callback(list[Message]) with a detached snapshot
        on_status: callback(Status) for derived status signals
        debounce: input inactivity delay in seconds
    """

    def __init__(self, state: SessionState,
                 on_update: Optional[Callable] = None,
                 on_status: Optional[Callable] = None,
                 debounce: float = DEFAULT_DEBOUNCE):
        self.state = state
        self.on_update = on_update or (lambda messages: None)
        self.on_status = on_status or (lambda status: None)
        self.debounce = debounce

    # ── Public interface ───────────────────────────────────────────

    def snapshot(self) -> list:
        return [m.snapshot() for m in self.state.messages]

    def clear(self):
        """Drop the whole transcript (start of a new session)."""
        self.cancel_timer()
        self.state.clear_transcript()
        self._publish()

    def on_input_delta(self, text: str):
        """User speech recognized. Restarts the processing debounce."""
        if not text:
            return
        self._restart_timer()
        if self._finalize_pending(Sender.MODEL):
            self.state.pending_output = ""
        self.state.pending_input += text
        self._upsert(Sender.USER, self.state.pending_input)

    def on_output_delta(self, text: str):
        """Model speech transcribed. Closes the user's turn."""
        if not text:
            return
        self.cancel_timer()
        if self.state.pending_input:
            self._finalize_pending(Sender.USER)
            self.state.pending_input = ""
        self.on_status(Status.SPEAKING)
        self.state.pending_output += text
        self._upsert(Sender.MODEL, self.state.pending_output)

    def on_turn_complete(self):
        self.cancel_timer()
        changed = self._finalize_pending(Sender.USER)
        changed = self._finalize_pending(Sender.MODEL) or changed
        self.state.pending_input = ""
        self.state.pending_output = ""
        if changed:
            self._publish()
        self.on_status(Status.LISTENING)

    def cancel_timer(self):
        handle, self.state.debounce_handle = self.state.debounce_handle, None
        if handle is not None:
            handle.cancel()

    # ── Internals ──────────────────────────────────────────────────

    def _restart_timer(self):
        self.cancel_timer()
        loop = asyncio.get_running_loop()
        self.state.debounce_handle = loop.call_later(self.debounce, self._on_debounce)

    def _on_debounce(self):
        self.state.debounce_handle = None
        if self.state.pending_input and not self.state.pending_output:
            logger.debug("Input quiet for %.1fs, model is processing", self.debounce)
            self.on_status(Status.PROCESSING)

    def _pending(self, sender: Sender) -> Optional[Message]:
        """The tail message if it belongs to sender and is not final."""
        if not self.state.messages:
            return None
        tail = self.state.messages[-1]
        if tail.sender == sender and not tail.is_final:
            return tail
        return None

    def _finalize_pending(self, sender: Sender) -> bool:
        message = self._pending(sender)
        if message is None:
            return False
        message.finalize()
        return True

    def _upsert(self, sender: Sender, text: str):
        message = self._pending(sender)
        if message is not None:
            message.text = text
        else:
            self.state.messages.append(Message(sender=sender, text=text))
        self._publish()

    def _publish(self):
        self.on_update(self.snapshot())
