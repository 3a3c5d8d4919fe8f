"""
Tahta Connect - Phone to Board Media Transfer

A phone joins a room created by a board, negotiates a direct WebRTC data
channel through a signaling relay, and streams photos and recordings to the
board in fixed-size chunks. The board can also hand a document back.
"""

from .config import Config, load_config
from .errors import (
    TahtaError, RelayError, RelayWriteError, RelayReadError, RoomNotFoundError,
    NegotiationError, NegotiationTimeoutError, TransferError, TransportNotOpenError,
    TransferInProgressError, TransferAborted, DataIntegrityError, describe_failure,
)
from .session import PhoneSession, BoardSession

__version__ = '1.0.0'

__all__ = [
    'Config',
    'load_config',
    'TahtaError',
    'RelayError',
    'RelayWriteError',
    'RelayReadError',
    'RoomNotFoundError',
    'NegotiationError',
    'NegotiationTimeoutError',
    'TransferError',
    'TransportNotOpenError',
    'TransferInProgressError',
    'TransferAborted',
    'DataIntegrityError',
    'describe_failure',
    'PhoneSession',
    'BoardSession',
]
