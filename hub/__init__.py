"""
Signaling hub module for meshcall.
Tracks room membership and relays signaling messages between participants.
"""

from .room_manager import Participant, RoomManager
from .signaling_hub import SignalingHub

__all__ = [
    'Participant',
    'RoomManager',
    'SignalingHub'
]
