"""Tests for the bundled REST relay server."""

import asyncio
import json

from fastapi.testclient import TestClient

from tahta.api.rest import create_app, format_event, relay_events
from tahta.signaling import InMemoryRelay


def test_root_reports_rooms() -> None:
    store = InMemoryRelay()
    client = TestClient(create_app(store))

    client.put('/session/abc/status.json', json='waiting')
    data = client.get('/').json()

    assert data['name'] == 'Tahta Relay'
    assert data['rooms'] == 1
    assert data['subscribers'] == 0


def test_put_get_delete() -> None:
    client = TestClient(create_app())

    response = client.put('/session/abc/initiator/description.json',
                          json={'type': 'offer', 'sdp': 'v=0'})
    assert response.status_code == 200
    assert response.json() == {'type': 'offer', 'sdp': 'v=0'}

    assert client.get('/session/abc.json').json() == {
        'initiator': {'description': {'type': 'offer', 'sdp': 'v=0'}}
    }

    assert client.delete('/session/abc/initiator.json').status_code == 200
    assert client.get('/session/abc.json').json() is None


def test_post_returns_ordered_keys() -> None:
    client = TestClient(create_app())

    keys = [client.post('/session/abc/responder/candidates.json',
                        json={'candidate': f'candidate:{n}'}).json()['name']
            for n in range(5)]
    stored = client.get('/session/abc/responder/candidates.json').json()

    assert keys == sorted(keys)
    assert [stored[key]['candidate'] for key in keys] == [f'candidate:{n}' for n in range(5)]


def test_rejects_bad_bodies() -> None:
    client = TestClient(create_app())

    assert client.put('/session/abc/status.json', content=b'{nope').status_code == 400
    assert client.post('/session/abc/list.json', content=b'null').status_code == 400


def test_put_null_removes() -> None:
    client = TestClient(create_app())

    client.put('/session/abc/status.json', json='waiting')
    client.put('/session/abc/status.json', content=b'null')

    assert client.get('/session/abc.json').json() is None


def test_event_format() -> None:
    assert format_event('put', {'path': '/', 'data': 1}) == \
        'event: put\ndata: {"path": "/", "data": 1}\n\n'


def test_relay_events_stream_current_value_changes_and_keepalives() -> None:
    async def run():
        store = InMemoryRelay()
        await store.set('session/abc/status', 'waiting')

        events = relay_events(store, 'session/abc', keepalive=0.05)
        first = await events.__anext__()
        await store.set('session/abc/status', 'connected')
        second = await events.__anext__()
        third = await events.__anext__()
        await events.aclose()
        return first, second, third, store.subscriber_count

    first, second, third, subscribers = asyncio.run(run())

    assert first == format_event('put', {'path': '/', 'data': {'status': 'waiting'}})
    assert json.loads(second.split('data: ', 1)[1]) == {'path': '/', 'data': {'status': 'connected'}}
    assert third.startswith('event: keep-alive')
    assert subscribers == 0
