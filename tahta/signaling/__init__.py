"""
Signaling Module - Session Bootstrap Through a Relay

Peers exchange offers/answers and ICE candidates through a neutral
key-value relay before the direct connection exists.
"""

from .models import Role, SessionDescription, IceCandidate, RoomPaths
from .relay import Relay, InMemoryRelay, Subscription
from .http_relay import HttpRelay
from .channel import SignalingChannel

__all__ = [
    'Role',
    'SessionDescription',
    'IceCandidate',
    'RoomPaths',
    'Relay',
    'InMemoryRelay',
    'Subscription',
    'HttpRelay',
    'SignalingChannel',
]
