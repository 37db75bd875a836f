"""
WebRTC module for meshcall.
Handles peer connections, per-peer negotiation and the signaling channel.
"""

from .connection import PeerConnection, TERMINAL_STATES
from .peer_session import NegotiationState, PeerSession
from .peer_manager import PeerSessionManager
from .renderer import SessionRenderer, MediaSinkRenderer
from .signaling import SignalingClient

__all__ = [
    'PeerConnection',
    'TERMINAL_STATES',
    'NegotiationState',
    'PeerSession',
    'PeerSessionManager',
    'SessionRenderer',
    'MediaSinkRenderer',
    'SignalingClient'
]
