"""
In-Process Data Channel

Two connected MemoryDataChannel endpoints behave like an ordered, reliable
data channel: messages are buffered on the sending side and handed to the
other endpoint in order when drained. With auto_drain (the default) draining
is scheduled on the event loop after each send; without it the test drives
drain() itself, which makes backpressure observable. A non-zero delay spaces
automatic deliveries out, like a slow link.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Tuple, Union

from .transport import DataChannelTransport, frame_from_message, message_size
from ..errors import TransportNotOpenError

logger = logging.getLogger(__name__)


class MemoryDataChannel(DataChannelTransport):
    """One endpoint of an in-process channel pair."""

    def __init__(self, label: str = 'media', auto_drain: bool = True, delay: float = 0.0):
        super().__init__(label)
        self.auto_drain = auto_drain
        self.delay = delay
        self._peer: Optional['MemoryDataChannel'] = None
        self._pending: Deque[Tuple[Union[str, bytes], int]] = deque()
        self._buffered = 0
        self._open = False
        self._closed = False
        self._low_threshold = 0
        self._next_delivery = 0.0

        # Inspection for tests and diagnostics
        self.sent: List[Union[str, bytes]] = []
        self.max_buffered = 0

    @classmethod
    def pair(cls, label: str = 'media', auto_drain: bool = True,
             delay: float = 0.0) -> Tuple['MemoryDataChannel', 'MemoryDataChannel']:
        """Create two linked endpoints (not yet open)."""
        a = cls(label, auto_drain, delay)
        b = cls(label, auto_drain, delay)
        a._peer, b._peer = b, a
        return a, b

    def open(self):
        """Open both endpoints."""
        for endpoint in (self, self._peer):
            if endpoint is not None and not endpoint._open and not endpoint._closed:
                endpoint._open = True
                endpoint._emit_open()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def buffered_amount(self) -> int:
        return self._buffered

    def _set_low_threshold(self, threshold: int):
        self._low_threshold = threshold

    def send(self, data: Union[str, bytes]):
        if not self._open:
            raise TransportNotOpenError(f"Channel '{self.label}' is not open")

        size = message_size(data)
        self.sent.append(data)
        self._pending.append((data, size))
        self._buffered += size
        self.max_buffered = max(self.max_buffered, self._buffered)

        if self.auto_drain:
            loop = asyncio.get_running_loop()
            if self.delay:
                # Deliveries stay in send order: each one is scheduled later than the last
                self._next_delivery = max(loop.time(), self._next_delivery) + self.delay
                loop.call_at(self._next_delivery, self.drain, 1)
            else:
                loop.call_soon(self.drain, 1)

    def drain(self, count: Optional[int] = None) -> int:
        """
        Hand up to `count` queued messages (all if None) to the peer.

        Returns:
            Number of messages delivered
        """
        delivered = 0
        while self._pending and (count is None or delivered < count):
            data, size = self._pending.popleft()
            self._buffered -= size
            delivered += 1
            if self._peer is not None and self._peer._open:
                self._peer._emit_message(frame_from_message(data))

        if delivered and self._buffered <= self._low_threshold:
            self._emit_buffered_low()
        return delivered

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._open = False
        self._pending.clear()
        self._buffered = 0
        self._emit_close()

        # Closing one end closes the other
        if self._peer is not None:
            self._peer.close()
