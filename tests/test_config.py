"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from tahta.config import DEFAULT_ICE_SERVERS, Config, load_config, validate_ice_servers


def test_defaults() -> None:
    config = Config()

    assert config.relay_root == 'session'
    assert config.ice_servers == DEFAULT_ICE_SERVERS
    assert config.negotiation_timeout == 30.0
    assert config.max_buffered_chunks == 4


def test_turn_servers_rejected() -> None:
    with pytest.raises(ValueError):
        validate_ice_servers(['stun:stun.l.google.com:19302', 'turn:relay.example.com:3478'])
    with pytest.raises(ValueError):
        Config(ice_servers=['turns:relay.example.com:5349'])


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('TAHTA_RELAY_URL', 'http://10.0.0.5:8470')
    monkeypatch.setenv('TAHTA_ICE_SERVERS', 'stun:a.example.com:3478, stun:b.example.com:3478')
    monkeypatch.setenv('TAHTA_NEGOTIATION_TIMEOUT', '12.5')
    monkeypatch.setenv('TAHTA_DOCUMENT_PATH', '/tmp/lesson.pdf')

    config = Config.from_env()

    assert config.relay_url == 'http://10.0.0.5:8470'
    assert config.ice_servers == ['stun:a.example.com:3478', 'stun:b.example.com:3478']
    assert config.negotiation_timeout == 12.5
    assert config.document_path == Path('/tmp/lesson.pdf')


def test_env_rejects_turn(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('TAHTA_ICE_SERVERS', 'turn:relay.example.com')
    with pytest.raises(ValueError):
        Config.from_env()


def test_file_round_trip(tmp_path: Path) -> None:
    path = tmp_path / 'config.json'
    original = Config(relay_url='http://board.local:8470', negotiation_timeout=5.0,
                      received_dir=tmp_path / 'in', document_path=tmp_path / 'doc.pdf')
    original.save(path)

    loaded = Config.from_file(path)

    assert loaded.to_dict() == original.to_dict()
    assert json.loads(path.read_text())['relay_url'] == 'http://board.local:8470'


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert Config.from_file(tmp_path / 'nope.json').to_dict() == Config().to_dict()


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'relay_url': 'http://file:1', 'relay_root': 'rooms'}))
    monkeypatch.setenv('TAHTA_RELAY_URL', 'http://env:2')

    config = load_config(path)

    assert config.relay_url == 'http://env:2'
    assert config.relay_root == 'rooms'


def test_flow_control_and_request_timeout_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('TAHTA_MAX_BUFFERED_CHUNKS', '8')
    monkeypatch.setenv('TAHTA_POLL_INTERVAL', '0.05')
    monkeypatch.setenv('TAHTA_REQUEST_TIMEOUT', '15')

    config = load_config()

    assert config.max_buffered_chunks == 8
    assert config.poll_interval == 0.05
    assert config.request_timeout == 15.0


def test_env_flow_control_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'max_buffered_chunks': 2, 'poll_interval': 0.02,
                                'request_timeout': 5.0}))
    monkeypatch.setenv('TAHTA_MAX_BUFFERED_CHUNKS', '6')

    config = load_config(path)

    assert config.max_buffered_chunks == 6
    assert config.poll_interval == 0.02
    assert config.request_timeout == 5.0
