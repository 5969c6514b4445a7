"""Relay state tracking and one-shot edge events."""

from __future__ import annotations

import logging

from btrelay.core.model import StateRecord

logger = logging.getLogger(__name__)

_ON_TOKENS = frozenset({"on", "1"})
_OFF_TOKENS = frozenset({"off", "0"})


class EdgeFlag:
    """Single-slot event cell: set by the producer, cleared by the first consume.

    Setting an already-set flag does not queue a second occurrence.
    """

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = False

    def set(self) -> None:
        self._pending = True

    def consume(self) -> bool:
        pending = self._pending
        self._pending = False
        return pending

    def peek(self) -> bool:
        return self._pending

    def __repr__(self) -> str:
        return f"EdgeFlag(pending={self._pending})"


class StateTracker:
    """Last reported relay state, connection edges and the last error text."""

    def __init__(self) -> None:
        self._record = StateRecord()
        self._previously_connected = False
        self.last_error = ""
        self.state_rose = EdgeFlag()
        self.state_fell = EdgeFlag()
        self.connection_established = EdgeFlag()
        self.connection_lost = EdgeFlag()

    @property
    def record(self) -> StateRecord:
        return self._record

    @property
    def numeric(self) -> int:
        return self._record.numeric

    @property
    def text(self) -> str:
        return self._record.text

    def on_notification(self, raw: bytes | str) -> None:
        """Apply one inbound notification.

        Unrecognised tokens replace the stored text but keep the numeric state.
        """
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        text = raw.strip()

        before = self._record.numeric
        numeric = before
        if text in _ON_TOKENS:
            numeric = 1
        elif text in _OFF_TOKENS:
            numeric = 0

        if before == 0 and numeric == 1:
            self.state_rose.set()
        elif before == 1 and numeric == 0:
            self.state_fell.set()

        self._record = StateRecord(numeric=numeric, text=text, previous_numeric=numeric)
        logger.debug("Relay reported %r (state=%d)", text, numeric)

    def mark_connected(self) -> bool:
        """Record that the link is up; returns True on a 0->1 transition."""
        if self._previously_connected:
            return False
        self._previously_connected = True
        self.connection_established.set()
        return True

    def mark_disconnected(self) -> bool:
        """Record that the link is down; returns True on a 1->0 transition."""
        if not self._previously_connected:
            return False
        self._previously_connected = False
        self.connection_lost.set()
        return True

    def reset(self) -> None:
        """Return the state record to zero; edges and errors are left alone."""
        self._record = StateRecord()

    def record_error(self, error: BaseException | str) -> str:
        self.last_error = str(error)
        return self.last_error

    def clear_error(self) -> None:
        self.last_error = ""
