"""
Signaling hub: room membership bookkeeping and targeted message relay.

The hub never looks inside offer/answer/candidate payloads beyond the routing
field ``to``; the peer session layer can change its payloads without any
hub-side change.
"""
import datetime
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from core.config import ServerConfig
from core.exceptions import RoomFullError
from core.logging import LoggerMixin
from core.validation_utils import ValidationUtils
from hub.room_manager import Participant, RoomManager

RELAYED_ACTIONS = ('offer', 'answer', 'ice-candidate')

# Client-facing status action -> action delivered to peers
STATUS_ACTIONS = {
    'mute': 'peer-muted',
    'screen-status': 'peer-screen',
}


class SignalingHub(LoggerMixin):
    """Routes signaling messages between participants of the same room."""

    def __init__(self, config: Optional[ServerConfig] = None):
        super().__init__()
        self.config = config or ServerConfig()
        self.room_manager = RoomManager(capacity=self.config.room_capacity)
        self.participants: Dict[str, Participant] = {}

        self.action_handlers: Dict[str, Callable[[Participant, Any], Awaitable[None]]] = {}
        self._register_default_handlers()

        self.stats = {
            'total_messages': 0,
            'dropped_messages': 0,
            'rejected_joins': 0,
            'start_time': datetime.datetime.now()
        }

    def _register_default_handlers(self):
        self.action_handlers['join'] = self._handle_join
        for action in RELAYED_ACTIONS:
            self.action_handlers[action] = self._make_relay_handler(action)
        for action in STATUS_ACTIONS:
            self.action_handlers[action] = self._make_status_handler(action)

    def _make_relay_handler(self, action: str):
        async def handler(participant: Participant, data: Any):
            await self.relay(action, data)
        return handler

    def _make_status_handler(self, action: str):
        async def handler(participant: Participant, data: Any):
            await self.status_broadcast(action, participant.id, data)
        return handler

    def register(self, send: Callable[[Dict[str, Any]], Awaitable[None]],
                 participant_id: Optional[str] = None) -> str:
        """Register a new channel and assign its participant id."""
        participant_id = participant_id or uuid.uuid4().hex
        if participant_id in self.participants:
            raise ValueError(f"Participant id already registered: {participant_id}")
        self.participants[participant_id] = Participant(id=participant_id, send=send)
        self.log_info(f"Participant connected", {"participant_id": participant_id})
        return participant_id

    async def disconnect(self, participant_id: str):
        """Forget a participant and tell its room it left."""
        participant = self.participants.pop(participant_id, None)
        if participant is None:
            return

        room_id = self.room_manager.leave_room(participant_id)
        if room_id is not None:
            message = {
                'action': 'peer-left',
                'data': {'id': participant_id, 'displayName': participant.display_name}
            }
            for member in self.room_manager.get_room_members(room_id):
                await self._deliver(member, message)

        self.log_info(f"Participant disconnected", {
            "participant_id": participant_id,
            "room_id": room_id
        })

    async def handle_message(self, participant_id: str, message: Dict[str, Any]) -> bool:
        """Dispatch one decoded channel message. Returns False if it was not handled."""
        participant = self.participants.get(participant_id)
        if participant is None:
            return False

        action = message.get('action') if isinstance(message, dict) else None
        self.stats['total_messages'] += 1

        handler = self.action_handlers.get(action)
        if handler is None:
            self.stats['dropped_messages'] += 1
            self.log_warning(f"No handler for action", {
                "action": action,
                "participant_id": participant_id,
                "available_actions": list(self.action_handlers.keys())
            })
            return False

        await handler(participant, message.get('data'))
        return True

    async def _handle_join(self, participant: Participant, data: Any):
        if isinstance(data, dict):
            room_id = data.get('roomId')
            display_name = data.get('displayName')
        else:
            room_id, display_name = None, None

        if not room_id:
            self.log_warning(f"Join without room id ignored", {"participant_id": participant.id})
            return

        try:
            await self.join(participant.id, str(room_id), display_name)
        except RoomFullError as e:
            self.stats['rejected_joins'] += 1
            self.log_warning(f"Join rejected", {"participant_id": participant.id, **e.details})
            await self._deliver(participant, {'action': 'full', 'data': {'roomId': e.room_id}})

    async def join(self, participant_id: str, room_id: str,
                   display_name: Optional[str] = None) -> Dict[str, Any]:
        """Register a participant into a room.

        Replies ``joined`` to the caller with the other members present at the
        moment of processing, and sends each of those members ``peer-joined``.

        Raises:
            RoomFullError: the room is at capacity; the caller is not added
        """
        participant = self.participants[participant_id]
        if participant.room_id is not None:
            self.log_warning(f"Participant already in a room, join ignored", {
                "participant_id": participant_id,
                "room_id": participant.room_id,
                "requested_room_id": room_id
            })
            return self._joined_payload(participant, self.room_manager.get_other_members(
                participant.room_id, participant_id))

        previous_name = participant.display_name
        participant.display_name = display_name or f"User-{participant_id[:6]}"
        try:
            others = self.room_manager.join_room(room_id, participant)
        except RoomFullError:
            participant.display_name = previous_name
            raise

        reply = self._joined_payload(participant, others)
        await self._deliver(participant, {'action': 'joined', 'data': reply})

        announcement = {'action': 'peer-joined', 'data': participant.describe()}
        for member in others:
            await self._deliver(member, announcement)

        return reply

    def _joined_payload(self, participant: Participant, others) -> Dict[str, Any]:
        return {
            'roomId': participant.room_id,
            'you': participant.id,
            'peers': [member.describe() for member in others]
        }

    async def relay(self, action: str, data: Any) -> bool:
        """Forward an offer/answer/candidate verbatim to ``data['to']``.

        Unroutable messages are dropped without telling anyone.
        """
        error = ValidationUtils.validate_required_fields(data, ['to'])
        if error is None and not isinstance(data['to'], str):
            error = "Invalid 'to' field"
        target = self.participants.get(data['to']) if error is None else None
        if target is None:
            self.stats['dropped_messages'] += 1
            self.log_debug(f"Dropping unroutable {action}", {
                "error": error,
                "to": data.get('to') if isinstance(data, dict) else None
            })
            return False

        await self._deliver(target, {'action': action, 'data': data})
        return True

    async def status_broadcast(self, action: str, sender_id: str, data: Any) -> int:
        """Deliver a presentation status update.

        Unicast when ``to`` is given, otherwise broadcast to the sender's room
        excluding the sender. Returns the number of recipients.
        """
        if not isinstance(data, dict):
            return 0

        message = {'action': STATUS_ACTIONS[action], 'data': data}

        to = data.get('to')
        if to:
            target = self.participants.get(to)
            if target is None:
                self.stats['dropped_messages'] += 1
                return 0
            await self._deliver(target, message)
            return 1

        room_id = self.room_manager.get_participant_room(sender_id)
        if room_id is None:
            return 0

        recipients = self.room_manager.get_other_members(room_id, sender_id)
        for member in recipients:
            await self._deliver(member, message)
        return len(recipients)

    async def _deliver(self, participant: Participant, message: Dict[str, Any]) -> bool:
        """Send to one participant; a failed send never affects the others."""
        try:
            await participant.send(message)
            return True
        except Exception as e:
            self.log_error(f"Failed to deliver message", {
                "participant_id": participant.id,
                "action": message.get('action'),
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False

    def get_status(self) -> Dict[str, Any]:
        """Get hub status."""
        uptime = datetime.datetime.now() - self.stats['start_time']
        return {
            'rooms': self.room_manager.get_room_list(),
            'participants': len(self.participants),
            'capacity': self.room_manager.capacity,
            'total_messages': self.stats['total_messages'],
            'dropped_messages': self.stats['dropped_messages'],
            'rejected_joins': self.stats['rejected_joins'],
            'uptime_seconds': uptime.total_seconds()
        }
