"""
Custom exception classes for the meshcall signaling hub and peer sessions.
"""


class MeshCallError(Exception):
    """Base exception for meshcall."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class RoomFullError(MeshCallError):
    """Raised when a join would push a room past its capacity."""

    def __init__(self, room_id: str, capacity: int):
        super().__init__("Room is full", {"room_id": room_id, "capacity": capacity})
        self.room_id = room_id
        self.capacity = capacity


class MediaError(MeshCallError):
    """Raised when local media cannot be acquired."""
    pass


class MediaAccessDenied(MediaError):
    """Raised when a capture device refuses access or cannot be opened."""
    pass


class UserCancelled(MediaError):
    """Raised when the user dismisses a capture source picker."""
    pass


class SignalingApplyError(MeshCallError):
    """Raised when a session description or candidate cannot be applied."""
    pass


class ConnectionTerminal(MeshCallError):
    """Raised when a peer connection reaches a failed or closed state."""
    pass
