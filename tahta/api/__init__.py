"""
API Module - Relay Server

Serves the signaling relay over HTTP for phones and boards on the network.
"""

from .rest import create_app, run_relay_server

__all__ = ['create_app', 'run_relay_server']
