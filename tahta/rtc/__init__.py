"""
RTC Module - Peer Connection Negotiation and Data Channels
"""

from .transport import (
    DataChannelTransport, InboundFrame, TextFrame, BinaryFrame, DeferredFrame,
    frame_from_message,
)
from .memory import MemoryDataChannel
from .peer import (
    PeerConnection, PeerConnectionFactory, AiortcPeerConnection, AiortcDataChannel,
    aiortc_factory, iter_sdp_candidates,
)
from .negotiator import ConnectionNegotiator, ConnectionState

__all__ = [
    'DataChannelTransport',
    'InboundFrame',
    'TextFrame',
    'BinaryFrame',
    'DeferredFrame',
    'frame_from_message',
    'MemoryDataChannel',
    'PeerConnection',
    'PeerConnectionFactory',
    'AiortcPeerConnection',
    'AiortcDataChannel',
    'aiortc_factory',
    'iter_sdp_candidates',
    'ConnectionNegotiator',
    'ConnectionState',
]
