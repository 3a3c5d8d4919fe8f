"""
Chunked Transfer Protocol

Binds a ChunkSender and a ChunkReceiver to one data channel.

Inbound frames are queued by the channel callback and consumed by a single
pump task, so the receiver sees them strictly in order and a slow frame
(deferred materialization) holds back everything behind it. Outbound and
inbound transfers are independent: one of each may be in flight.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from .chunker import CHUNK_SIZE, read_payload
from .messages import PDF_REQUEST, TransferHeader, TransferKind, encode_request
from .receiver import ChunkReceiver, ReceivedFile
from .sender import ChunkSender, ProgressCallback
from ..errors import TransferError, TransportNotOpenError
from ..rtc.transport import DataChannelTransport

logger = logging.getLogger(__name__)

# Queued after the last frame when the channel closes
_CHANNEL_CLOSED = object()

# Upper bound on working through frames that arrived before a close
DRAIN_TIMEOUT = 5.0

ErrorCallback = Callable[[TransferError], None]


class TransferProtocol:
    """
    Send and receive files over a data channel.

    Call start() once the event loop is running; stop() to shut the pump down.
    """

    def __init__(self, transport: DataChannelTransport, chunk_size: int = CHUNK_SIZE,
                 max_buffered_chunks: int = 4, poll_interval: float = 0.01):
        self.transport = transport
        self.sender = ChunkSender(transport, chunk_size, max_buffered_chunks, poll_interval)
        self.receiver = ChunkReceiver()

        self._inbound: asyncio.Queue = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None
        self._channel_closed = False
        self._error_callbacks: List[ErrorCallback] = []

        transport.on_message(self._inbound.put_nowait)
        transport.on_close(self._on_channel_closed)
        self.receiver.on_error(self._report_error)

    # === Observers ===

    def on_send_progress(self, callback: ProgressCallback):
        self.sender.on_progress(callback)

    def on_receive_progress(self, callback: ProgressCallback):
        self.receiver.on_progress(callback)

    def on_file_received(self, callback: Callable[[ReceivedFile], None]):
        self.receiver.on_file_received(callback)

    def on_request(self, callback: Callable[[str], None]):
        self.receiver.on_request(callback)

    def on_error(self, callback: ErrorCallback):
        """Inbound transfer failures (aborted, integrity)."""
        self._error_callbacks.append(callback)

    def _report_error(self, error: TransferError):
        logger.error(f"Inbound transfer failed: {error}")
        for callback in list(self._error_callbacks):
            callback(error)

    def _on_channel_closed(self):
        self._channel_closed = True
        self._inbound.put_nowait(_CHANNEL_CLOSED)

    # === Lifecycle ===

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def start(self):
        """Start consuming inbound frames."""
        if self._pump is None:
            self._pump = asyncio.get_running_loop().create_task(self._run())

    async def stop(self):
        """
        Stop consuming inbound frames.

        If the channel has already closed, frames that arrived before the
        close are still handled, so a transfer that completed is delivered
        and one that was cut off is reported as aborted. A transfer still
        pending when the pump stops is aborted too.
        """
        if self._pump is None:
            return

        if self._channel_closed and not self._pump.done():
            await asyncio.wait([self._pump], timeout=DRAIN_TIMEOUT)

        self._pump.cancel()
        await asyncio.gather(self._pump, return_exceptions=True)
        self._pump = None

        try:
            self.receiver.abort('transfer stopped')
        except TransferError as e:
            self._report_error(e)

    async def _run(self):
        while True:
            frame = await self._inbound.get()

            if frame is _CHANNEL_CLOSED:
                try:
                    self.receiver.abort('data channel closed')
                except TransferError as e:
                    self._report_error(e)
                return

            try:
                await self.receiver.handle_frame(frame)
            except TransferError as e:
                self._report_error(e)

    # === Sending ===

    async def send_file(self, kind: Union[TransferKind, str], filename: str, payload: bytes,
                        progress_callback: Optional[ProgressCallback] = None) -> TransferHeader:
        """Send one payload; see ChunkSender.send_file."""
        return await self.sender.send_file(kind, filename, payload, progress_callback)

    async def send_image(self, payload: bytes, filename: str = 'photo.jpg') -> TransferHeader:
        return await self.send_file(TransferKind.IMAGE, filename, payload)

    async def send_audio(self, payload: bytes, filename: str = 'recording.webm') -> TransferHeader:
        return await self.send_file(TransferKind.AUDIO, filename, payload)

    async def send_path(self, kind: Union[TransferKind, str], file_path: Path,
                        progress_callback: Optional[ProgressCallback] = None) -> TransferHeader:
        """Read a file from disk and send it under its own name."""
        file_path = Path(file_path)
        payload = await read_payload(file_path)
        return await self.send_file(kind, file_path.name, payload, progress_callback)

    def request_document(self):
        """Ask the other side to send its document."""
        if not self.transport.is_open:
            raise TransportNotOpenError("Data channel is not open")
        self.transport.send(encode_request(PDF_REQUEST))

    def _expect_file(self, kind: Optional[TransferKind]):
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on_file(received: ReceivedFile):
            if not future.done() and (kind is None or received.kind == kind):
                future.set_result(received)

        def _on_error(error: TransferError):
            if not future.done():
                future.set_exception(error)

        def _cleanup():
            self.receiver.remove_file_callback(_on_file)
            if _on_error in self._error_callbacks:
                self._error_callbacks.remove(_on_error)

        self.receiver.on_file_received(_on_file)
        self._error_callbacks.append(_on_error)
        return future, _cleanup

    async def wait_for_file(self, kind: Optional[TransferKind] = None,
                            timeout: Optional[float] = None) -> ReceivedFile:
        """
        Wait for the next completed inbound transfer (of `kind`, if given).

        Raises:
            asyncio.TimeoutError: Nothing arrived within `timeout`
            TransferError: The inbound transfer failed
        """
        future, cleanup = self._expect_file(kind)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            cleanup()

    async def fetch_document(self, timeout: Optional[float] = None) -> ReceivedFile:
        """
        Request the other side's document and wait for it to arrive.

        The listener is registered before the request goes out, so a fast
        reply cannot be missed.
        """
        future, cleanup = self._expect_file(TransferKind.PDF)
        try:
            self.request_document()
            return await asyncio.wait_for(future, timeout)
        finally:
            cleanup()

    def get_stats(self) -> dict:
        return {
            'open': self.transport.is_open,
            'sender': self.sender.get_stats(),
            'receiver': self.receiver.get_stats(),
        }
