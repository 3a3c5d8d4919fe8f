"""
Data Channel Transport

A reliable, ordered, message-oriented channel. Implementations wrap an
aiortc RTCDataChannel (peer.py) or an in-process pair (memory.py).

Inbound Frames
==============

Messages arrive either as text (structured control messages), as ready
bytes, or as a reference whose bytes must be fetched asynchronously. The
three shapes are explicit types so the receiver can match on them instead of
probing attributes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from ..errors import TransportNotOpenError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextFrame:
    text: str


@dataclass(frozen=True)
class BinaryFrame:
    data: bytes


@dataclass(frozen=True)
class DeferredFrame:
    """Binary payload that has to be materialized before use."""
    materialize: Callable[[], Awaitable[bytes]]


InboundFrame = Union[TextFrame, BinaryFrame, DeferredFrame]

# Callback types
FrameCallback = Callable[[InboundFrame], None]
EventCallback = Callable[[], None]


def frame_from_message(message) -> InboundFrame:
    """Classify a raw channel message."""
    if isinstance(message, str):
        return TextFrame(message)
    if isinstance(message, (bytes, bytearray, memoryview)):
        return BinaryFrame(bytes(message))
    if callable(message):
        return DeferredFrame(message)
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def message_size(data: Union[str, bytes]) -> int:
    """Bytes a message occupies in the send buffer."""
    if isinstance(data, str):
        return len(data.encode('utf-8'))
    return len(data)


class DataChannelTransport(ABC):
    """
    Base class for data channel transports.

    Subclasses report state through _emit_open / _emit_close / _emit_message /
    _emit_buffered_low; observers register with on_open / on_close / on_message.
    """

    def __init__(self, label: str = 'media'):
        self.label = label
        self._open_callbacks: List[EventCallback] = []
        self._close_callbacks: List[EventCallback] = []
        self._message_callbacks: List[FrameCallback] = []
        self._buffered_low: Optional[asyncio.Event] = None
        self._close_emitted = False

    # === State ===

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while messages can be sent."""

    @property
    @abstractmethod
    def buffered_amount(self) -> int:
        """Bytes queued for sending but not yet handed to the network."""

    @abstractmethod
    def send(self, data: Union[str, bytes]):
        """Queue one message. Raises TransportNotOpenError when not open."""

    @abstractmethod
    def close(self):
        """Close the channel; close observers fire once."""

    def _set_low_threshold(self, threshold: int):
        """Tell the underlying channel when to signal a drained buffer."""

    # === Observers ===

    def on_open(self, callback: EventCallback):
        self._open_callbacks.append(callback)

    def on_close(self, callback: EventCallback):
        self._close_callbacks.append(callback)

    def on_message(self, callback: FrameCallback):
        self._message_callbacks.append(callback)

    def _emit_open(self):
        logger.info(f"Data channel '{self.label}' open")
        for callback in list(self._open_callbacks):
            callback()

    def _emit_close(self):
        if self._close_emitted:
            return
        self._close_emitted = True
        logger.info(f"Data channel '{self.label}' closed")
        for callback in list(self._close_callbacks):
            callback()
        if self._buffered_low is not None:
            self._buffered_low.set()

    def _emit_message(self, frame: InboundFrame):
        for callback in list(self._message_callbacks):
            callback(frame)

    def _emit_buffered_low(self):
        if self._buffered_low is not None:
            self._buffered_low.set()

    # === Flow control ===

    async def wait_buffered_below(self, threshold: int, poll_interval: float = 0.01):
        """
        Suspend until buffered_amount <= threshold.

        Wakes on the channel's buffered-amount-low signal, and re-checks at
        least every poll_interval in case the signal is missed.
        """
        if self._buffered_low is None:
            self._buffered_low = asyncio.Event()
        self._set_low_threshold(threshold)

        while self.buffered_amount > threshold:
            if not self.is_open:
                raise TransportNotOpenError(f"Channel '{self.label}' closed while draining")
            self._buffered_low.clear()
            try:
                await asyncio.wait_for(self._buffered_low.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
