"""
Signaling Data Model

Session descriptions and ICE candidates as they are stored on the relay.

Relay Layout
============

```
{root}/{room}/initiator/description     {"type": "offer",  "sdp": "..."}
{root}/{room}/initiator/candidates      {<push key>: {"candidate", "sdpMid", "sdpMLineIndex"}, ...}
{root}/{room}/responder/description     {"type": "answer", "sdp": "..."}
{root}/{room}/responder/candidates      {...}
{root}/{room}/status                    "waiting" | "connected" | ...
```

The field names on the relay follow the browser RTCIceCandidate/RTCSessionDescription
JSON so that a browser board can read what a Python phone publishes.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class Role(Enum):
    """Which side of the negotiation a peer plays."""
    INITIATOR = 'initiator'    # phone, creates the offer
    RESPONDER = 'responder'    # board, answers

    @property
    def remote(self) -> 'Role':
        return Role.RESPONDER if self is Role.INITIATOR else Role.INITIATOR


@dataclass(frozen=True)
class SessionDescription:
    """An offer or answer blob."""
    kind: str   # 'offer' | 'answer'
    body: str

    def to_dict(self) -> Dict[str, str]:
        return {'type': self.kind, 'sdp': self.body}

    @classmethod
    def from_dict(cls, data: Any) -> Optional['SessionDescription']:
        """Parse a relay value; returns None when no usable description is present."""
        if not isinstance(data, dict) or not data.get('sdp'):
            return None
        return cls(kind=data.get('type', ''), body=data['sdp'])


@dataclass(frozen=True)
class IceCandidate:
    """One network path a peer proposes."""
    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidate': self.candidate,
            'sdpMid': self.sdp_mid,
            'sdpMLineIndex': self.sdp_mline_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IceCandidate':
        return cls(
            candidate=data.get('candidate') or '',
            sdp_mid=data.get('sdpMid'),
            sdp_mline_index=data.get('sdpMLineIndex'),
        )


class RoomPaths:
    """Builds relay paths for one room."""

    def __init__(self, room_id: str, root: str = 'session'):
        if not room_id or '/' in room_id:
            raise ValueError(f"Invalid room id: {room_id!r}")
        self.room_id = room_id
        self.root = root.strip('/')

    @property
    def room(self) -> str:
        return f"{self.root}/{self.room_id}"

    @property
    def status(self) -> str:
        return f"{self.room}/status"

    def namespace(self, role: Role) -> str:
        return f"{self.room}/{role.value}"

    def description(self, role: Role) -> str:
        return f"{self.namespace(role)}/description"

    def candidates(self, role: Role) -> str:
        return f"{self.namespace(role)}/candidates"
