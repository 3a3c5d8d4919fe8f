"""
Transfer Wire Messages

Design Decision: Framing
========================

Options Considered:
1. Length-prefixed binary frames (header + data in one message)
   - Compact
   - A browser board would need a custom parser

2. JSON control messages + raw binary messages
   - The data channel already separates text and binary messages
   - Browser side is `JSON.parse` and `ArrayBuffer`

Decision: JSON text messages for control, raw binary messages for data

Message Format:
```
text    {"header": {"type": "image"|"audio"|"pdf", "filename": "...",
                    "totalSize": 200000, "totalChunks": 4}}
binary  <= 65536 bytes, exactly totalChunks of them, in order
text    {"complete": true}

text    {"type": "pdf_request"}          (ask the board for its document)
```
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .chunker import CHUNK_SIZE, get_chunk_count
from ..errors import DataIntegrityError

PDF_REQUEST = 'pdf_request'


class TransferKind(Enum):
    """What a payload is."""
    IMAGE = 'image'
    AUDIO = 'audio'
    PDF = 'pdf'


class MessageType(Enum):
    """Control message types."""
    HEADER = 'HEADER'
    COMPLETE = 'COMPLETE'
    REQUEST = 'REQUEST'


@dataclass(frozen=True)
class TransferHeader:
    """Announces one payload."""
    kind: TransferKind
    filename: str
    total_size: int
    total_chunks: int

    @classmethod
    def for_payload(cls, kind: Union[TransferKind, str], filename: str, total_size: int,
                    chunk_size: int = CHUNK_SIZE) -> 'TransferHeader':
        return cls(
            kind=TransferKind(kind),
            filename=filename,
            total_size=total_size,
            total_chunks=get_chunk_count(total_size, chunk_size),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.kind.value,
            'filename': self.filename,
            'totalSize': self.total_size,
            'totalChunks': self.total_chunks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferHeader':
        try:
            header = cls(
                kind=TransferKind(data['type']),
                filename=str(data['filename']),
                total_size=int(data['totalSize']),
                total_chunks=int(data['totalChunks']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataIntegrityError(f"Malformed transfer header: {data!r}") from e

        if header.total_size < 0 or header.total_chunks < 0:
            raise DataIntegrityError(f"Negative sizes in transfer header: {data!r}")
        return header


@dataclass(frozen=True)
class ControlMessage:
    """A decoded text message."""
    type: MessageType
    header: Optional[TransferHeader] = None
    request: Optional[str] = None


def encode_header(header: TransferHeader) -> str:
    return json.dumps({'header': header.to_dict()})


def encode_complete() -> str:
    return json.dumps({'complete': True})


def encode_request(request: str = PDF_REQUEST) -> str:
    return json.dumps({'type': request})


def decode_control(text: str) -> ControlMessage:
    """
    Decode a text message from the data channel.

    Raises:
        DataIntegrityError: Not JSON, or not one of the known messages
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DataIntegrityError(f"Control message is not JSON: {text[:64]!r}") from e

    if not isinstance(data, dict):
        raise DataIntegrityError(f"Unknown control message: {text[:64]!r}")

    if 'header' in data:
        return ControlMessage(MessageType.HEADER, header=TransferHeader.from_dict(data['header']))
    if data.get('complete') is True:
        return ControlMessage(MessageType.COMPLETE)
    if isinstance(data.get('type'), str):
        return ControlMessage(MessageType.REQUEST, request=data['type'])

    raise DataIntegrityError(f"Unknown control message: {text[:64]!r}")
