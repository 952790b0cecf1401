"""Peer-side call client."""
from .relay_client import RelayClient
from .session import CallSession, SessionObserver

__all__ = ["CallSession", "RelayClient", "SessionObserver"]
