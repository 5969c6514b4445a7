"""Store-and-forward queue for tokens sent while the link is down."""

from __future__ import annotations

import logging
from collections import deque

logger = logging.getLogger(__name__)


class SendQueue:
    """Bounded FIFO of pending tokens with drop-oldest overflow."""

    def __init__(self, max_size: int = 20):
        """Initialize queue.

        Args:
            max_size: Maximum pending tokens. If exceeded, the oldest is dropped.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._pending: deque[str] = deque(maxlen=max_size)
        self._overflow_count = 0

    @property
    def max_size(self) -> int:
        return self._pending.maxlen or 0

    @property
    def overflow_count(self) -> int:
        """Number of tokens evicted since creation."""
        return self._overflow_count

    def push(self, token: str) -> str | None:
        """Append a token, returning the evicted oldest token if the queue was full."""
        evicted = None
        if len(self._pending) == self._pending.maxlen:
            evicted = self._pending[0]
            self._overflow_count += 1
            logger.warning("Send queue full (%d): dropped oldest token %r", self.max_size, evicted)
        self._pending.append(token)
        return evicted

    def pop(self) -> str:
        """Remove and return the oldest token. Raises IndexError when empty."""
        return self._pending.popleft()

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)
