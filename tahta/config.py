"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
import json

from dotenv import load_dotenv


DEFAULT_ICE_SERVERS = [
    'stun:stun.l.google.com:19302',
    'stun:stun1.l.google.com:19302',
    'stun:stun2.l.google.com:19302',
]


def validate_ice_servers(urls: List[str]) -> List[str]:
    """
    Only STUN servers are allowed: connectivity is direct or reflexive,
    never relayed through TURN.
    """
    for url in urls:
        scheme = url.split(':', 1)[0].lower()
        if scheme not in ('stun', 'stuns'):
            raise ValueError(f"Only STUN servers are supported, got: {url}")
    return list(urls)


@dataclass
class Config:
    """
    Tahta Connect Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (TAHTA_*)
    2. Config file (config.json)
    3. Default values
    """
    # Relay
    relay_url: str = 'http://127.0.0.1:8470'
    relay_root: str = 'session'
    relay_host: str = '0.0.0.0'
    relay_port: int = 8470

    # Connectivity
    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))

    # Timeouts (seconds)
    negotiation_timeout: float = 30.0
    request_timeout: float = 60.0

    # Flow control
    max_buffered_chunks: int = 4
    poll_interval: float = 0.01

    # Board side
    received_dir: Path = field(default_factory=lambda: Path('./received'))
    document_path: Optional[Path] = None

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        self.ice_servers = validate_ice_servers(self.ice_servers)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Relay
        config.relay_url = os.getenv('TAHTA_RELAY_URL', config.relay_url)
        config.relay_root = os.getenv('TAHTA_RELAY_ROOT', config.relay_root)
        config.relay_host = os.getenv('TAHTA_RELAY_HOST', config.relay_host)
        config.relay_port = int(os.getenv('TAHTA_RELAY_PORT', config.relay_port))

        # Connectivity
        ice = os.getenv('TAHTA_ICE_SERVERS', '')
        if ice:
            config.ice_servers = validate_ice_servers(
                [url.strip() for url in ice.split(',') if url.strip()]
            )

        config.negotiation_timeout = float(
            os.getenv('TAHTA_NEGOTIATION_TIMEOUT', config.negotiation_timeout)
        )
        config.request_timeout = float(
            os.getenv('TAHTA_REQUEST_TIMEOUT', config.request_timeout)
        )

        # Flow control
        config.max_buffered_chunks = int(
            os.getenv('TAHTA_MAX_BUFFERED_CHUNKS', config.max_buffered_chunks)
        )
        config.poll_interval = float(os.getenv('TAHTA_POLL_INTERVAL', config.poll_interval))

        # Board side
        received_dir = os.getenv('TAHTA_RECEIVED_DIR')
        if received_dir:
            config.received_dir = Path(received_dir)

        document_path = os.getenv('TAHTA_DOCUMENT_PATH')
        if document_path:
            config.document_path = Path(document_path)

        # Logging
        config.log_level = os.getenv('TAHTA_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Relay
        config.relay_url = data.get('relay_url', config.relay_url)
        config.relay_root = data.get('relay_root', config.relay_root)
        config.relay_host = data.get('relay_host', config.relay_host)
        config.relay_port = data.get('relay_port', config.relay_port)

        # Connectivity
        if 'ice_servers' in data:
            config.ice_servers = validate_ice_servers(data['ice_servers'])
        config.negotiation_timeout = data.get('negotiation_timeout', config.negotiation_timeout)
        config.request_timeout = data.get('request_timeout', config.request_timeout)

        # Flow control
        config.max_buffered_chunks = data.get('max_buffered_chunks', config.max_buffered_chunks)
        config.poll_interval = data.get('poll_interval', config.poll_interval)

        # Board side
        if 'received_dir' in data:
            config.received_dir = Path(data['received_dir'])
        if data.get('document_path'):
            config.document_path = Path(data['document_path'])

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'relay_url': self.relay_url,
            'relay_root': self.relay_root,
            'relay_host': self.relay_host,
            'relay_port': self.relay_port,
            'ice_servers': list(self.ice_servers),
            'negotiation_timeout': self.negotiation_timeout,
            'request_timeout': self.request_timeout,
            'max_buffered_chunks': self.max_buffered_chunks,
            'poll_interval': self.poll_interval,
            'received_dir': str(self.received_dir),
            'document_path': str(self.document_path) if self.document_path else None,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()
    defaults = Config()

    # Merge (env takes precedence for non-default values)
    for key in ['relay_url', 'relay_root', 'relay_host', 'relay_port', 'ice_servers',
                'negotiation_timeout', 'request_timeout', 'max_buffered_chunks',
                'poll_interval', 'received_dir', 'document_path', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "relay_url": "http://192.168.1.10:8470",
  "relay_root": "session",
  "ice_servers": ["stun:stun.l.google.com:19302"],
  "negotiation_timeout": 30.0,
  "request_timeout": 60.0,
  "max_buffered_chunks": 4,
  "received_dir": "./received",
  "document_path": "./lesson.pdf",
  "log_level": "INFO"
}
"""


if __name__ == "__main__":
    # Print example config
    print("Example configuration file (config.json):")
    print(EXAMPLE_CONFIG)
