"""
Room and participant bookkeeping for the signaling hub.

Rooms are created implicitly on first join and deleted when their last
participant leaves; an absent room and an empty room are the same thing.

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - room id -> participants in join order
    - participant_to_room: Dict[str, str] - participant id -> room id (quick lookup)
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.exceptions import RoomFullError
from core.logging import LoggerMixin


@dataclass
class Participant:
    """A connected participant.

    Attributes:
        id: Hub-assigned identifier, unique for the connection's lifetime
        send: Coroutine function delivering one message dict to this participant
        display_name: Name shown to other members
        room_id: Room the participant joined, or None before joining
    """
    id: str
    send: Callable[[Dict[str, Any]], Awaitable[None]] = field(repr=False)
    display_name: Optional[str] = None
    room_id: Optional[str] = None

    def describe(self) -> Dict[str, Any]:
        return {"id": self.id, "displayName": self.display_name}


class RoomManager(LoggerMixin):
    """Tracks room membership and enforces the room capacity."""

    def __init__(self, capacity: int = 5):
        super().__init__()
        self.capacity = capacity

        # room_id -> {participant_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}

        # participant_id -> room_id (for quick lookup)
        self.participant_to_room: Dict[str, str] = {}

    def join_room(self, room_id: str, participant: Participant) -> List[Participant]:
        """Add a participant to a room, creating the room if needed.

        Returns the other members present at the moment of joining.

        Raises:
            RoomFullError: the room already holds ``capacity`` participants
        """
        members = self.rooms.get(room_id, {})
        if len(members) >= self.capacity:
            raise RoomFullError(room_id, self.capacity)

        others = list(members.values())

        if room_id not in self.rooms:
            self.rooms[room_id] = members
            self.log_info(f"Room '{room_id}' created")

        members[participant.id] = participant
        participant.room_id = room_id
        self.participant_to_room[participant.id] = room_id

        self.log_info(f"'{participant.display_name}' ({participant.id}) joined room '{room_id}'", {
            "room_id": room_id,
            "peer_count": len(members)
        })
        return others

    def leave_room(self, participant_id: str) -> Optional[str]:
        """Remove a participant from its room.

        Returns the room id the participant was in, or None.
        """
        room_id = self.participant_to_room.pop(participant_id, None)
        if room_id is None:
            return None

        members = self.rooms.get(room_id, {})
        participant = members.pop(participant_id, None)
        if participant is not None:
            participant.room_id = None

        if not members:
            self.rooms.pop(room_id, None)
            self.log_info(f"Room '{room_id}' deleted (empty)")
        else:
            self.log_info(f"Participant {participant_id} left room '{room_id}'", {
                "room_id": room_id,
                "peer_count": len(members)
            })

        return room_id

    def get_room_members(self, room_id: str) -> List[Participant]:
        return list(self.rooms.get(room_id, {}).values())

    def get_other_members(self, room_id: str, exclude_id: str) -> List[Participant]:
        """Members of a room other than ``exclude_id``."""
        return [p for p in self.rooms.get(room_id, {}).values() if p.id != exclude_id]

    def get_participant_room(self, participant_id: str) -> Optional[str]:
        return self.participant_to_room.get(participant_id)

    def get_room_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    def get_room_list(self) -> List[Dict[str, Any]]:
        """Snapshot of every room with its members."""
        return [
            {
                "room_id": room_id,
                "peer_count": len(members),
                "peers": [p.describe() for p in members.values()]
            }
            for room_id, members in self.rooms.items()
        ]
