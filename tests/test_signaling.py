"""Tests for the in-memory relay and the room-scoped signaling channel."""

import asyncio
from typing import Any, List

import pytest

from fakes import settle
from tahta.errors import RelayReadError, RelayWriteError
from tahta.signaling import (
    IceCandidate, InMemoryRelay, Role, RoomPaths, SessionDescription, SignalingChannel,
)


def _candidate(n: int) -> IceCandidate:
    return IceCandidate(f'candidate:{n} 1 udp 2122260223 10.0.0.{n} 5000 typ host', '0', 0)


def test_room_paths_layout() -> None:
    paths = RoomPaths('abc123')

    assert paths.room == 'session/abc123'
    assert paths.status == 'session/abc123/status'
    assert paths.description(Role.INITIATOR) == 'session/abc123/initiator/description'
    assert paths.candidates(Role.RESPONDER) == 'session/abc123/responder/candidates'


@pytest.mark.parametrize("room_id", ['', 'a/b'])
def test_room_id_validation(room_id: str) -> None:
    with pytest.raises(ValueError):
        RoomPaths(room_id)


def test_watch_delivers_current_value_and_changes() -> None:
    async def run():
        relay = InMemoryRelay()
        values: List[Any] = []
        await relay.set('a/b', 1)

        subscription = relay.watch('a', values.append)
        await settle(0.01)
        await relay.set('a/c', 2)
        await settle(0.01)
        subscription.cancel()
        await relay.set('a/d', 3)
        await settle(0.01)
        return values, relay.subscriber_count

    values, subscribers = asyncio.run(run())

    assert values == [{'b': 1}, {'b': 1, 'c': 2}]
    assert subscribers == 0


def test_push_keys_sort_in_insertion_order() -> None:
    async def run():
        relay = InMemoryRelay()
        keys = [await relay.push('list', n) for n in range(20)]
        return keys, relay.snapshot('list')

    keys, stored = asyncio.run(run())

    assert keys == sorted(keys)
    assert [stored[key] for key in sorted(stored)] == list(range(20))


def test_remove_prunes_empty_parents() -> None:
    async def run():
        relay = InMemoryRelay()
        await relay.set('session/r/initiator/description', {'type': 'offer', 'sdp': 'x'})
        await relay.remove('session/r/initiator')
        await relay.remove('session/r/initiator')
        return relay.snapshot(), relay.removals

    tree, removals = asyncio.run(run())

    assert tree == {}
    assert removals == 1


def test_candidates_delivered_once_in_order() -> None:
    async def run():
        relay = InMemoryRelay()
        board = SignalingChannel(relay, 'room1', Role.RESPONDER)
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)

        received: List[IceCandidate] = []
        board.subscribe_remote_candidates(received.append)

        for n in range(3):
            await phone.publish_candidate(_candidate(n))
        await settle(0.01)
        # Each push redelivers the whole list
        await phone.publish_candidate(_candidate(3))
        await settle(0.01)
        return received

    received = asyncio.run(run())

    assert received == [_candidate(n) for n in range(4)]


def test_remote_description_fires_only_with_sdp() -> None:
    async def run():
        relay = InMemoryRelay()
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)

        descriptions: List[SessionDescription] = []
        phone.subscribe_remote_description(descriptions.append)
        await settle(0.01)
        await relay.set('session/room1/responder/description', {'type': 'answer'})
        await settle(0.01)
        await relay.set('session/room1/responder/description', {'type': 'answer', 'sdp': 'v=0'})
        await settle(0.01)
        return descriptions

    assert asyncio.run(run()) == [SessionDescription('answer', 'v=0')]


def test_session_exists() -> None:
    async def run():
        relay = InMemoryRelay()
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)
        before = await phone.session_exists()
        await relay.set('session/room1/status', 'waiting')
        after = await phone.session_exists()
        return before, after

    assert asyncio.run(run()) == (False, True)


def test_teardown_is_idempotent_and_local_only() -> None:
    async def run():
        relay = InMemoryRelay()
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)
        board = SignalingChannel(relay, 'room1', Role.RESPONDER)

        await board.publish_status('waiting')
        await board.publish_local_description(SessionDescription('answer', 'v=0 b'))
        await phone.publish_local_description(SessionDescription('offer', 'v=0 p'))
        await phone.publish_candidate(_candidate(1))
        phone.subscribe_remote_description(lambda description: None)

        await phone.teardown()
        await phone.teardown()
        return relay.snapshot('session/room1'), relay.removals, relay.subscriber_count

    room, removals, subscribers = asyncio.run(run())

    assert 'initiator' not in room
    assert room['responder']['description']['sdp'] == 'v=0 b'
    assert room['status'] == 'waiting'
    assert removals == 1
    assert subscribers == 0


def test_teardown_swallows_write_failure() -> None:
    async def run():
        relay = InMemoryRelay()
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)
        await phone.publish_local_description(SessionDescription('offer', 'v=0'))
        relay.fail_writes = True
        await phone.teardown()
        return phone.is_torn_down

    assert asyncio.run(run()) is True


def test_publish_failure_raises_write_error() -> None:
    async def run():
        relay = InMemoryRelay()
        relay.fail_writes = True
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)
        with pytest.raises(RelayWriteError):
            await phone.publish_local_description(SessionDescription('offer', 'v=0'))
        with pytest.raises(RelayWriteError):
            await phone.publish_candidate(_candidate(1))

    asyncio.run(run())


def test_watch_failure_reaches_error_observers() -> None:
    async def run():
        relay = InMemoryRelay()
        relay.fail_reads = True
        phone = SignalingChannel(relay, 'room1', Role.INITIATOR)

        errors: List[Exception] = []
        phone.on_error(errors.append)
        phone.subscribe_remote_candidates(lambda candidate: None)
        await settle(0.01)
        return errors

    errors = asyncio.run(run())

    assert len(errors) == 1
    assert isinstance(errors[0], RelayReadError)
