"""End-to-end phone/board sessions over an in-memory relay and scripted peers."""

import asyncio
from pathlib import Path

import pytest

from fakes import FakeNetwork, settle, wait_until
from tahta.config import Config
from tahta.errors import (
    NegotiationTimeoutError, RoomNotFoundError, TransferAborted, TransportNotOpenError,
)
from tahta.session import BoardSession, PhoneSession, unique_path
from tahta.signaling import InMemoryRelay
from tahta.transfer import TransferHeader, TransferKind
from tahta.transfer.messages import encode_header


def _config(tmp_path: Path, **overrides) -> Config:
    settings = dict(received_dir=tmp_path / 'received', negotiation_timeout=2.0)
    settings.update(overrides)
    return Config(**settings)


def test_unique_path_strips_directories_and_avoids_collisions(tmp_path: Path) -> None:
    assert unique_path(tmp_path, '../../etc/photo.jpg') == tmp_path / 'photo.jpg'

    (tmp_path / 'photo.jpg').write_bytes(b'1')
    (tmp_path / 'photo-1.jpg').write_bytes(b'2')
    assert unique_path(tmp_path, 'photo.jpg') == tmp_path / 'photo-2.jpg'


def test_phone_sends_photo_to_board(tmp_path: Path) -> None:
    config = _config(tmp_path)
    payload = bytes(range(256)) * 600

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        saved = []
        board.on_file_saved(lambda received, path: saved.append(path))
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        progress = []
        phone.on_progress(progress.append)

        await phone.open()
        header = await phone.send_image(payload)
        await wait_until(lambda: saved)

        await phone.close()
        await board.stop()
        return header, saved, progress, relay.snapshot('session/room1')

    header, saved, progress, room = asyncio.run(run())

    assert header.total_chunks == 3
    assert saved == [tmp_path / 'received' / 'photo.jpg']
    assert saved[0].read_bytes() == payload
    assert progress[-1] == 1.0
    assert room == {'status': 'closed'}


def test_phone_pulls_board_document(tmp_path: Path) -> None:
    document = tmp_path / 'lesson.pdf'
    document.write_bytes(b'%PDF-1.4' + b'.' * 100000)
    config = _config(tmp_path, document_path=document)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await phone.open()
        received = await phone.request_document(timeout=2.0)

        await phone.close()
        await board.stop()
        return received

    received = asyncio.run(run())

    assert received.kind == TransferKind.PDF
    assert received.filename == 'lesson.pdf'
    assert received.payload == document.read_bytes()


def test_board_accepts_a_second_phone(tmp_path: Path) -> None:
    config = _config(tmp_path)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        saved = []
        board.on_file_saved(lambda received, path: saved.append(path))
        await board.start()

        for n in range(2):
            phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
            await phone.open()
            await phone.send_audio(b'voice' * 100, filename=f'note{n}.webm')
            await wait_until(lambda: len(saved) == n + 1)
            await phone.close()
            await wait_until(lambda: board.attempts == n + 2)

        attempts = board.attempts
        await board.stop()
        return saved, attempts, network.links

    saved, attempts, links = asyncio.run(run())

    assert [path.name for path in saved] == ['note0.webm', 'note1.webm']
    assert attempts == 3
    assert links == 2


def test_missing_room_is_reported(tmp_path: Path) -> None:
    async def run():
        phone = PhoneSession('ghost', _config(tmp_path), relay=InMemoryRelay(),
                             peer_factory=FakeNetwork().factory)
        try:
            with pytest.raises(RoomNotFoundError):
                await phone.open()
        finally:
            await phone.close()

    asyncio.run(run())


def test_open_times_out_without_a_link(tmp_path: Path) -> None:
    config = _config(tmp_path, negotiation_timeout=0.1)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork(link=False)

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        errors = []
        phone.on_error(errors.append)
        try:
            with pytest.raises(NegotiationTimeoutError):
                await phone.open()
        finally:
            await phone.close()
            await board.stop()
        return errors

    errors = asyncio.run(run())

    assert any(isinstance(error, NegotiationTimeoutError) for error in errors)


def test_send_before_open_fails(tmp_path: Path) -> None:
    async def run():
        phone = PhoneSession('room1', _config(tmp_path), relay=InMemoryRelay(),
                             peer_factory=FakeNetwork().factory)
        with pytest.raises(TransportNotOpenError):
            await phone.send_image(b'abc')
        await phone.close()

    asyncio.run(run())


def test_board_reports_transfer_cut_off_by_phone(tmp_path: Path) -> None:
    config = _config(tmp_path)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        errors, saved = [], []
        board.on_error(errors.append)
        board.on_file_saved(lambda received, path: saved.append(path))
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await phone.open()

        # Header and the first chunk of a 200000-byte photo, then the phone leaves
        channel = phone.protocol.transport
        channel.send(encode_header(TransferHeader.for_payload('image', 'cut.jpg', 200000)))
        channel.send(b'x' * 65536)
        await wait_until(lambda: board.protocol is not None
                         and board.protocol.receiver.pending is not None
                         and board.protocol.receiver.pending.received_size == 65536)

        await phone.close()
        await wait_until(lambda: board.attempts == 2)
        await board.stop()
        return errors, saved

    errors, saved = asyncio.run(run())

    aborted = [error for error in errors if isinstance(error, TransferAborted)]
    assert len(aborted) == 1
    assert 'cut.jpg' in str(aborted[0])
    assert saved == []


def test_close_right_after_send_still_delivers(tmp_path: Path) -> None:
    config = _config(tmp_path)
    payload = b'\x07' * 300000

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork(delay=0.005)

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        saved = []
        board.on_file_saved(lambda received, path: saved.append(path))
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await phone.open()
        await phone.send_image(payload, filename='whiteboard.jpg')
        buffered = phone.protocol.transport.buffered_amount
        await phone.close()

        await wait_until(lambda: saved)
        await board.stop()
        return buffered, saved

    buffered, saved = asyncio.run(run())

    assert buffered == 0
    assert saved[0].name == 'whiteboard.jpg'
    assert saved[0].read_bytes() == payload


def test_board_skips_offer_left_by_a_vanished_phone(tmp_path: Path) -> None:
    config = _config(tmp_path)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        saved = []
        board.on_file_saved(lambda received, path: saved.append(path))
        await board.start()

        first = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await first.open()

        # The link drops and the phone never erases its offer
        first.negotiator.transport.close()
        await wait_until(lambda: board.attempts == 2)
        await settle()
        leftover = relay.snapshot('session/room1/initiator/description')

        second = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await second.open()
        await second.send_image(b'fresh photo', filename='second.jpg')
        await wait_until(lambda: saved)

        answered = board.negotiator.remote_description
        offer = second.negotiator.pc.local

        await second.close()
        await board.stop()
        await first.close()
        return leftover, answered, offer, saved

    leftover, answered, offer, saved = asyncio.run(run())

    assert leftover is not None
    assert answered == offer
    assert [path.name for path in saved] == ['second.jpg']


def test_request_document_is_bounded_by_config(tmp_path: Path) -> None:
    config = _config(tmp_path, request_timeout=0.1)

    async def run():
        relay = InMemoryRelay()
        network = FakeNetwork()

        board = BoardSession('room1', config, relay=relay, peer_factory=network.factory)
        await board.start()

        phone = PhoneSession('room1', config, relay=relay, peer_factory=network.factory)
        await phone.open()
        try:
            with pytest.raises(asyncio.TimeoutError):
                await phone.request_document()
        finally:
            await phone.close()
            await board.stop()

    asyncio.run(run())
