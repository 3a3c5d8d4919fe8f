"""
Chunk Receiver

Design Decision: Header While a Transfer Is Pending
===================================================

Options Considered:
1. Reject the new header (TransferInProgressError)
   - The new transfer's chunks would then be appended to the old one
   - One lost sentinel poisons every later transfer

2. Abort the stale transfer (TransferAborted), start the new one
   - The sender only starts a new header after finishing or dying,
     so the newest header is the one that will be completed
   - The stale partial payload is reported, never merged

Decision: Abort the stale transfer and start the new one. The abort is
reported to error observers so nothing disappears silently.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .messages import ControlMessage, MessageType, TransferHeader, TransferKind, decode_control
from ..errors import DataIntegrityError, TransferAborted, TransferError
from ..rtc.transport import BinaryFrame, DeferredFrame, InboundFrame, TextFrame

logger = logging.getLogger(__name__)


@dataclass
class ReceivedFile:
    """A completed inbound transfer."""
    kind: TransferKind
    filename: str
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass
class PendingTransfer:
    """Accumulates the chunks of one inbound payload."""
    header: TransferHeader
    chunks: List[bytes] = field(default_factory=list)
    received_size: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def frames_received(self) -> int:
        return len(self.chunks)

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.header.total_size == 0:
            return 1.0
        return self.received_size / self.header.total_size

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    def append(self, data: bytes):
        """
        Add the next chunk.

        Raises:
            DataIntegrityError: More bytes than the header announced
        """
        if self.received_size + len(data) > self.header.total_size:
            raise DataIntegrityError(
                f"{self.header.filename}: received more than the announced "
                f"{self.header.total_size:,} bytes"
            )
        self.chunks.append(data)
        self.received_size += len(data)

    def assemble(self) -> bytes:
        """
        Concatenate chunks in receipt order after checking size and count.

        Raises:
            DataIntegrityError: Size or chunk count does not match the header
        """
        if self.received_size != self.header.total_size:
            raise DataIntegrityError(
                f"{self.header.filename}: got {self.received_size:,} of "
                f"{self.header.total_size:,} bytes"
            )
        if self.frames_received != self.header.total_chunks:
            raise DataIntegrityError(
                f"{self.header.filename}: got {self.frames_received} of "
                f"{self.header.total_chunks} chunks"
            )
        return b''.join(self.chunks)

    def to_dict(self) -> dict:
        return {
            'kind': self.header.kind.value,
            'filename': self.header.filename,
            'total_size': self.header.total_size,
            'total_chunks': self.header.total_chunks,
            'received_size': self.received_size,
            'frames_received': self.frames_received,
            'progress_percent': self.progress * 100,
            'elapsed_seconds': self.elapsed_seconds,
        }


# Callback types
FileCallback = Callable[[ReceivedFile], None]
ProgressCallback = Callable[[float], None]
RequestCallback = Callable[[str], None]
ErrorCallback = Callable[[TransferError], None]


class ChunkReceiver:
    """
    Reassembles inbound transfers, one frame at a time.

    handle_frame() must be awaited for each frame before the next one is
    handed in; deferred frames are materialized inside that call, so order
    is preserved.
    """

    def __init__(self):
        self.pending: Optional[PendingTransfer] = None

        self._file_callbacks: List[FileCallback] = []
        self._progress_callbacks: List[ProgressCallback] = []
        self._request_callbacks: List[RequestCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

        # Statistics
        self.files_received = 0
        self.bytes_received = 0

    # === Observers ===

    def on_file_received(self, callback: FileCallback):
        self._file_callbacks.append(callback)

    def remove_file_callback(self, callback: FileCallback):
        if callback in self._file_callbacks:
            self._file_callbacks.remove(callback)

    def on_progress(self, callback: ProgressCallback):
        self._progress_callbacks.append(callback)

    def on_request(self, callback: RequestCallback):
        self._request_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback):
        """Errors that do not interrupt processing (stale transfer aborted)."""
        self._error_callbacks.append(callback)

    # === Frame handling ===

    async def handle_frame(self, frame: InboundFrame):
        """
        Process one inbound frame.

        Raises:
            DataIntegrityError: Malformed message, stray chunk, or size/count mismatch
        """
        if isinstance(frame, TextFrame):
            self._handle_control(decode_control(frame.text))
        elif isinstance(frame, BinaryFrame):
            self._handle_chunk(frame.data)
        elif isinstance(frame, DeferredFrame):
            data = await frame.materialize()
            self._handle_chunk(bytes(data))
        else:
            raise TypeError(f"Unknown frame type: {type(frame).__name__}")

    def _handle_control(self, message: ControlMessage):
        if message.type == MessageType.HEADER:
            self._start(message.header)
        elif message.type == MessageType.COMPLETE:
            self._complete()
        elif message.type == MessageType.REQUEST:
            logger.info(f"Peer requested: {message.request}")
            for callback in list(self._request_callbacks):
                callback(message.request)

    def _start(self, header: TransferHeader):
        if self.pending is not None:
            stale = self.pending
            self.pending = None
            error = TransferAborted(
                f"{stale.header.filename} aborted after {stale.received_size:,} of "
                f"{stale.header.total_size:,} bytes: new transfer started"
            )
            logger.warning(str(error))
            for callback in list(self._error_callbacks):
                callback(error)

        logger.info(f"Receiving {header.kind.value}: {header.filename} "
                    f"({header.total_size:,} bytes, {header.total_chunks} chunks)")
        self.pending = PendingTransfer(header)

    def _handle_chunk(self, data: bytes):
        transfer = self.pending
        if transfer is None:
            raise DataIntegrityError(f"Received {len(data)} bytes without a transfer header")

        try:
            transfer.append(data)
        except DataIntegrityError:
            self.pending = None
            raise

        for callback in list(self._progress_callbacks):
            callback(transfer.progress)

    def _complete(self):
        transfer = self.pending
        if transfer is None:
            logger.warning("Completion message without a pending transfer")
            return

        # Cleared before validating so a bad transfer is discarded either way
        self.pending = None
        payload = transfer.assemble()

        self.files_received += 1
        self.bytes_received += len(payload)
        logger.info(f"Received {transfer.header.filename} "
                    f"({len(payload):,} bytes in {transfer.elapsed_seconds:.2f}s)")

        received = ReceivedFile(transfer.header.kind, transfer.header.filename, payload)
        for callback in list(self._file_callbacks):
            callback(received)

    def abort(self, reason: str = 'channel closed'):
        """
        Drop the pending transfer, if any.

        Raises:
            TransferAborted: A transfer was pending
        """
        transfer = self.pending
        if transfer is None:
            return
        self.pending = None
        raise TransferAborted(
            f"{transfer.header.filename} aborted after {transfer.received_size:,} of "
            f"{transfer.header.total_size:,} bytes: {reason}"
        )

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
            'pending': self.pending.to_dict() if self.pending else None,
        }
