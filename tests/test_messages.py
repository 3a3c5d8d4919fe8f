"""Tests for data channel control messages."""

import json

import pytest

from tahta.errors import DataIntegrityError
from tahta.transfer.messages import (
    MessageType, TransferHeader, TransferKind, decode_control, encode_complete,
    encode_header, encode_request,
)


def test_header_wire_format() -> None:
    header = TransferHeader.for_payload('image', 'photo.jpg', 200000)
    data = json.loads(encode_header(header))

    assert data == {
        'header': {
            'type': 'image',
            'filename': 'photo.jpg',
            'totalSize': 200000,
            'totalChunks': 4,
        }
    }


def test_decode_header() -> None:
    text = json.dumps({'header': {'type': 'audio', 'filename': 'recording.webm',
                                  'totalSize': 10, 'totalChunks': 1}})
    message = decode_control(text)

    assert message.type == MessageType.HEADER
    assert message.header == TransferHeader(TransferKind.AUDIO, 'recording.webm', 10, 1)


def test_decode_completion_and_request() -> None:
    assert decode_control(encode_complete()).type == MessageType.COMPLETE

    request = decode_control(encode_request())
    assert request.type == MessageType.REQUEST
    assert request.request == 'pdf_request'
    assert json.loads(encode_request()) == {'type': 'pdf_request'}


@pytest.mark.parametrize("text", [
    'not json',
    '[1, 2]',
    '{"complete": false}',
    '{"header": {"type": "video", "filename": "a", "totalSize": 1, "totalChunks": 1}}',
    '{"header": {"type": "image", "filename": "a"}}',
    '{"header": {"type": "image", "filename": "a", "totalSize": -1, "totalChunks": 0}}',
])
def test_malformed_control_messages(text: str) -> None:
    with pytest.raises(DataIntegrityError):
        decode_control(text)


def test_unknown_kind_rejected_when_sending() -> None:
    with pytest.raises(ValueError):
        TransferHeader.for_payload('video', 'clip.mp4', 10)
