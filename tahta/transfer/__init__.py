"""
Transfer Module - Chunked File Transfer Over a Data Channel

Frames payloads as header + fixed-size binary chunks + completion sentinel,
with backpressure on the sending side and validated reassembly on the
receiving side.
"""

from .chunker import CHUNK_SIZE, get_chunk_count, get_chunk_bounds, iter_chunks, read_payload, write_payload
from .messages import TransferKind, TransferHeader, MessageType, ControlMessage, decode_control
from .sender import ChunkSender
from .receiver import ChunkReceiver, PendingTransfer, ReceivedFile
from .protocol import TransferProtocol

__all__ = [
    'CHUNK_SIZE',
    'get_chunk_count',
    'get_chunk_bounds',
    'iter_chunks',
    'read_payload',
    'write_payload',
    'TransferKind',
    'TransferHeader',
    'MessageType',
    'ControlMessage',
    'decode_control',
    'ChunkSender',
    'ChunkReceiver',
    'PendingTransfer',
    'ReceivedFile',
    'TransferProtocol',
]
