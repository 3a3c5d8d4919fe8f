"""
Chunk Sender

Pushes one payload at a time through a data channel.
"""

import logging
from typing import Callable, List, Optional, Union

from .chunker import CHUNK_SIZE, iter_chunks
from .messages import TransferHeader, TransferKind, encode_complete, encode_header
from ..errors import TransferInProgressError, TransportNotOpenError
from ..rtc.transport import DataChannelTransport

logger = logging.getLogger(__name__)

# Progress callback type: fraction in (0, 1]
ProgressCallback = Callable[[float], None]


class ChunkSender:
    """
    Sends header, chunks and completion sentinel for one payload.

    Backpressure: before every chunk, if more than max_buffered_chunks worth
    of bytes is still queued in the channel, wait for it to drain. Memory
    committed to the channel stays bounded however large the payload is.
    send_file returns only once the channel has flushed the last frame.
    """

    def __init__(self, transport: DataChannelTransport, chunk_size: int = CHUNK_SIZE,
                 max_buffered_chunks: int = 4, poll_interval: float = 0.01):
        self.transport = transport
        self.chunk_size = chunk_size
        self.max_buffered = max_buffered_chunks * chunk_size
        self.poll_interval = poll_interval

        self._sending = False
        self._progress_callbacks: List[ProgressCallback] = []

        # Statistics
        self.files_sent = 0
        self.chunks_sent = 0
        self.bytes_sent = 0

    def on_progress(self, callback: ProgressCallback):
        self._progress_callbacks.append(callback)

    @property
    def is_sending(self) -> bool:
        return self._sending

    def _emit_progress(self, progress: float,
                       progress_callback: Optional[ProgressCallback] = None):
        for callback in list(self._progress_callbacks):
            callback(progress)
        if progress_callback:
            progress_callback(progress)

    async def send_file(self, kind: Union[TransferKind, str], filename: str, payload: bytes,
                        progress_callback: Optional[ProgressCallback] = None) -> TransferHeader:
        """
        Send a complete payload.

        Args:
            kind: image, audio or pdf
            filename: Name shown and stored on the other side
            payload: File contents
            progress_callback: Optional per-call progress callback

        Returns:
            The header that was sent

        Raises:
            TransportNotOpenError: Channel not open (checked up front, no queueing)
            TransferInProgressError: Another send_file is still running
        """
        if not self.transport.is_open:
            raise TransportNotOpenError("Data channel is not open")
        if self._sending:
            raise TransferInProgressError("Another transfer is still being sent")

        self._sending = True
        try:
            header = TransferHeader.for_payload(kind, filename, len(payload), self.chunk_size)
            logger.info(f"Sending {header.kind.value}: {filename} "
                        f"({header.total_size:,} bytes, {header.total_chunks} chunks)")

            self.transport.send(encode_header(header))

            frames_sent = 0
            for chunk in iter_chunks(payload, self.chunk_size):
                if self.transport.buffered_amount > self.max_buffered:
                    await self.transport.wait_buffered_below(self.max_buffered, self.poll_interval)

                self.transport.send(chunk)
                frames_sent += 1
                self.chunks_sent += 1
                self.bytes_sent += len(chunk)

                self._emit_progress(frames_sent / header.total_chunks, progress_callback)

            self.transport.send(encode_complete())

            # Closing the channel drops whatever is still queued
            await self.transport.wait_buffered_below(0, self.poll_interval)

            if header.total_chunks == 0:
                self._emit_progress(1.0, progress_callback)

            self.files_sent += 1
            logger.info(f"Sent {filename}")
            return header
        finally:
            self._sending = False

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'files_sent': self.files_sent,
            'chunks_sent': self.chunks_sent,
            'bytes_sent': self.bytes_sent,
        }
