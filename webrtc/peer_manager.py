"""
Peer session management for a full-mesh call.

One PeerSession per remote participant in the room. Every state change goes
through this manager: signaling messages from the hub, local media changes
and connection events.
"""
import asyncio
import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from aiortc import MediaStreamTrack

from core.config import ClientConfig
from core.exceptions import ConnectionTerminal, SignalingApplyError
from core.logging import LoggerMixin, debug_log
from core.validation_utils import ValidationUtils
from media.controller import LocalMediaController
from media.devices import MediaDevices
from media.tracks import TrackKind
from webrtc.connection import TERMINAL_STATES, PeerConnection
from webrtc.peer_session import NegotiationState, PeerSession
from webrtc.renderer import SessionRenderer


class PeerSessionManager(LoggerMixin):
    """Owns the peer sessions of one participant."""

    def __init__(self, config: Optional[ClientConfig] = None,
                 media: Optional[LocalMediaController] = None,
                 connection_factory: Optional[Callable[[str], Any]] = None,
                 renderer: Optional[SessionRenderer] = None,
                 send: Optional[Callable[[str, Dict[str, Any]], Awaitable[None]]] = None):
        super().__init__()
        self.config = config or ClientConfig()
        self.media = media or LocalMediaController(MediaDevices(self.config))
        self.connection_factory = connection_factory or self._default_connection
        self.renderer = renderer
        self.send = send

        self.local_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.display_name: Optional[str] = None
        self.sessions: Dict[str, PeerSession] = {}

        self.media.set_tracks_changed_callback(self.renegotiate_all)
        self.media.set_send_status(self._send_status)

        self.action_handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            'joined': self._handle_joined,
            'full': self._handle_full,
            'peer-joined': self._handle_peer_joined,
            'peer-left': self._handle_peer_left,
            'offer': self._handle_offer,
            'answer': self._handle_answer,
            'ice-candidate': self._handle_ice_candidate,
            'peer-muted': self._handle_peer_muted,
            'peer-screen': self._handle_peer_screen,
        }

    def set_send(self, send: Callable[[str, Dict[str, Any]], Awaitable[None]]):
        """Set the function that puts a message on the signaling channel."""
        self.send = send

    def set_renderer(self, renderer: SessionRenderer):
        self.renderer = renderer

    def _default_connection(self, remote_id: str) -> PeerConnection:
        return PeerConnection(remote_id, self.config.rtc_config)

    async def join(self, room_id: str, display_name: Optional[str] = None):
        """Ask the hub to join a room; the reply arrives as ``joined`` or ``full``."""
        self.display_name = display_name
        data = {'roomId': room_id}
        if display_name:
            data['displayName'] = display_name
        await self._send('join', data)

    async def leave(self):
        """Close every session, release local media and forget the room."""
        for remote_id in list(self.sessions):
            await self.remove_session(remote_id, reason="leave")
        await self.media.release()
        self.log_info(f"🚪 [PeerManager] Left room", {"room_id": self.room_id})
        self.local_id = None
        self.room_id = None

    async def handle_message(self, message: Any) -> bool:
        """Dispatch one message from the hub. Returns False if it was dropped."""
        if not isinstance(message, dict):
            self.log_warning(f"Ignoring non-object message", {"type": type(message).__name__})
            return False

        action = message.get('action')
        data = message.get('data')
        handler = self.action_handlers.get(action)
        if handler is None:
            self.log_warning(f"No handler for action", {
                "action": action,
                "available_actions": list(self.action_handlers.keys())
            })
            return False

        if not isinstance(data, dict):
            self.log_warning(f"Dropping {action} without a payload object")
            return False

        to = data.get('to')
        if to is not None and self.local_id is not None and to != self.local_id:
            self.log_debug(f"Dropping {action} addressed to another participant", {"to": to})
            return False

        try:
            await handler(data)
        except SignalingApplyError as e:
            self.log_warning(f"Dropped {action}: {e}")
            return False
        return True

    async def renegotiate_all(self):
        """Bring every live session in line with the current local tracks."""
        sessions = [session for session in self.sessions.values() if not session.closed]
        if not sessions:
            return

        debug_log(f"🔄 [PeerManager] Renegotiating sessions", {
            "count": len(sessions),
            "local_tracks": [kind.value for kind in self.media.local_tracks()],
            "timestamp": datetime.datetime.now().isoformat()
        }, "DEBUG", self.logger)

        results = await asyncio.gather(
            *(self._negotiate(session) for session in sessions),
            return_exceptions=True
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                self.log_error(f"Renegotiation failed", {
                    "remote_id": session.remote_id,
                    "error": str(result),
                    "error_type": type(result).__name__
                })

    async def handle_connection_state(self, remote_id: str, state: str, connection: Any = None):
        """Connection state change for one session; terminal states discard it."""
        session = self.sessions.get(remote_id)
        if session is None:
            return
        if connection is not None and session.connection is not connection:
            # Event from a connection this session already replaced
            return

        self.log_debug(f"Connection state {state}", {"remote_id": remote_id})
        if state in TERMINAL_STATES:
            error = ConnectionTerminal("Peer connection ended", {"remote_id": remote_id, "state": state})
            self.log_warning(f"🔌 [PeerManager] {error}")
            await self.remove_session(remote_id, reason=state)

    async def handle_remote_track(self, remote_id: str, track: MediaStreamTrack,
                                  mid: Optional[str], connection: Any = None):
        """Classify an inbound track and hand it to the renderer."""
        session = self.sessions.get(remote_id)
        if session is None or session.closed:
            return
        if connection is not None and session.connection is not connection:
            return

        kind = session.classify_remote_track(track, mid)
        if kind is None:
            self.log_debug(f"Unclassified remote track ignored", {
                "remote_id": remote_id,
                "kind": track.kind,
                "mid": mid
            })
            return
        if session.remote_tracks.get(kind) is track:
            return

        session.remote_tracks[kind] = track
        await self._render('on_peer_media_changed', remote_id, kind, track)

    async def remove_session(self, remote_id: str, reason: str = "") -> bool:
        session = self.sessions.pop(remote_id, None)
        if session is None:
            return False

        await session.close()
        self.log_info(f"👋 [PeerManager] Session closed", {"remote_id": remote_id, "reason": reason})
        await self._render('on_peer_left', remote_id)
        return True

    async def _handle_joined(self, data: Dict[str, Any]):
        error = ValidationUtils.validate_required_fields(data, ['you', 'roomId'])
        if error:
            raise SignalingApplyError(f"Invalid joined message: {error}")

        self.local_id = data['you']
        self.room_id = data['roomId']
        peers = data.get('peers') or []
        self.log_info(f"🏠 [PeerManager] Joined room", {
            "room_id": self.room_id,
            "local_id": self.local_id,
            "peers": len(peers)
        })

        discovered = []
        for peer in peers:
            if not isinstance(peer, dict) or not peer.get('id') or peer['id'] == self.local_id:
                continue
            session = self._ensure_session(peer['id'], peer.get('displayName'))
            discovered.append(session)
            await self._render('on_peer_joined', session.remote_id, session.display_name)

        if discovered and self.media.has_tracks():
            await asyncio.gather(*(self._negotiate(session) for session in discovered),
                                 return_exceptions=True)

    async def _handle_full(self, data: Dict[str, Any]):
        room_id = data.get('roomId')
        self.log_warning(f"🚪 [PeerManager] Room is full", {"room_id": room_id})
        await self._render('on_room_full', room_id)

    async def _handle_peer_joined(self, data: Dict[str, Any]):
        remote_id = data.get('id')
        if not remote_id or remote_id == self.local_id:
            raise SignalingApplyError("peer-joined without a usable id")

        session = self._ensure_session(remote_id, data.get('displayName'))
        await self._render('on_peer_joined', remote_id, session.display_name)
        if self.media.has_tracks():
            await self._negotiate(session)

    async def _handle_peer_left(self, data: Dict[str, Any]):
        remote_id = data.get('id')
        if remote_id:
            await self.remove_session(remote_id, reason="peer-left")

    async def _handle_offer(self, data: Dict[str, Any]):
        remote_id, description, labels = self._parse_description(data, 'offer')
        session = self._ensure_session(remote_id, data.get('displayName'))

        async with session.lock:
            if session.closed:
                return

            if session.negotiation_state is NegotiationState.OFFERING:
                if self._wins_glare(remote_id):
                    self.log_info(f"⚔️ [PeerManager] Offer collision, keeping our offer", {
                        "remote_id": remote_id
                    })
                    return
                self.log_info(f"⚔️ [PeerManager] Offer collision, yielding", {"remote_id": remote_id})
                await self._yield_offer(session)

            previous = NegotiationState.STABLE if session.negotiated else NegotiationState.IDLE
            session.transition(NegotiationState.ANSWER_PENDING)
            session.expect_labels(labels)
            try:
                await session.connection.set_remote_description(description)
                if session.closed:
                    return
                await session.sync_senders(self.media.local_tracks())
                if session.closed:
                    return
                answer = await session.connection.create_answer()
            except Exception as e:
                if session.closed:
                    return
                session.transition(previous)
                raise SignalingApplyError("Failed to answer offer", {
                    "remote_id": remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }) from e
            if session.closed:
                return

            await self._send('answer', {
                'to': remote_id,
                'from': self.local_id,
                'sdp': answer,
                'tracks': session.outgoing_labels()
            })
            session.transition(NegotiationState.STABLE)
            session.negotiated = True
            if session.unnegotiated_senders():
                session.renegotiate_pending = True
            changes = session.reconcile_remote_tracks()

        await self._apply_remote_changes(session, changes)
        await self._after_stable(session)

    async def _handle_answer(self, data: Dict[str, Any]):
        remote_id, description, labels = self._parse_description(data, 'answer')
        session = self.sessions.get(remote_id)
        if session is None:
            self.log_debug(f"Answer for unknown session dropped", {"remote_id": remote_id})
            return

        async with session.lock:
            if session.closed:
                return
            if session.negotiation_state is not NegotiationState.OFFERING:
                raise SignalingApplyError("Answer without a pending offer", {
                    "remote_id": remote_id,
                    "state": session.negotiation_state.value
                })

            session.expect_labels(labels)
            try:
                await session.connection.set_remote_description(description)
            except Exception as e:
                raise SignalingApplyError("Failed to apply answer", {
                    "remote_id": remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }) from e
            if session.closed:
                return

            session.transition(NegotiationState.STABLE)
            session.negotiated = True
            changes = session.reconcile_remote_tracks()

        await self._apply_remote_changes(session, changes)
        await self._after_stable(session)

    async def _handle_ice_candidate(self, data: Dict[str, Any]):
        remote_id = data.get('from')
        candidate = data.get('candidate')
        error = ValidationUtils.validate_candidate(candidate)
        if error:
            raise SignalingApplyError(f"Malformed ICE candidate: {error}", {"remote_id": remote_id})

        session = self.sessions.get(remote_id)
        if session is None or session.closed:
            self.log_debug(f"ICE candidate for unknown session dropped", {"remote_id": remote_id})
            return

        try:
            await session.connection.add_ice_candidate(candidate)
        except Exception as e:
            raise SignalingApplyError("Failed to add ICE candidate", {
                "remote_id": remote_id,
                "error": str(e)
            }) from e

    async def _handle_peer_muted(self, data: Dict[str, Any]):
        remote_id = data.get('from')
        if remote_id in self.sessions:
            await self._render('on_peer_muted', remote_id, bool(data.get('muted')))

    async def _handle_peer_screen(self, data: Dict[str, Any]):
        remote_id = data.get('from')
        if remote_id in self.sessions:
            await self._render('on_peer_screen', remote_id, bool(data.get('sharing')))

    async def _negotiate(self, session: PeerSession):
        """Enter Offering: sync senders, create an offer and send it."""
        async with session.lock:
            if session.closed:
                return
            if session.negotiation_state in (NegotiationState.OFFERING, NegotiationState.ANSWER_PENDING):
                session.renegotiate_pending = True
                self.log_debug(f"Negotiation in flight, re-offer queued", {"remote_id": session.remote_id})
                return

            previous = session.negotiation_state
            session.renegotiate_pending = False
            session.transition(NegotiationState.OFFERING)
            try:
                await session.sync_senders(self.media.local_tracks())
                if session.closed:
                    return
                offer = await session.connection.create_offer()
            except Exception as e:
                if session.closed:
                    self.log_debug(f"Offer abandoned, session closed", {"remote_id": session.remote_id})
                    return
                session.transition(previous)
                self.log_error(f"Failed to create offer", {
                    "remote_id": session.remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                return
            if session.closed:
                return

            await self._send('offer', {
                'to': session.remote_id,
                'from': self.local_id,
                'sdp': offer,
                'tracks': session.outgoing_labels(),
                'displayName': self.display_name
            })

    async def _after_stable(self, session: PeerSession):
        if session.closed or not session.renegotiate_pending:
            return
        session.renegotiate_pending = False
        await self._negotiate(session)

    async def _yield_offer(self, session: PeerSession):
        """Drop our pending offer so the remote one can be answered."""
        session.renegotiate_pending = True
        if session.negotiated:
            try:
                await session.connection.rollback()
            except Exception as e:
                self.log_warning(f"Failed to roll back local offer", {
                    "remote_id": session.remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
            if session.connection.signaling_state == "stable":
                session.transition(NegotiationState.STABLE)
                return

        # Nothing to keep, or the connection is stuck with our offer
        await session.replace_connection(self._create_connection(session.remote_id))

    def _wins_glare(self, remote_id: str) -> bool:
        return self.local_id is not None and self.local_id < remote_id

    async def _apply_remote_changes(self, session: PeerSession, changes):
        for kind, track in changes:
            await self._render('on_peer_media_changed', session.remote_id, kind, track)

    def _parse_description(self, data: Dict[str, Any], expected_type: str):
        error = ValidationUtils.validate_required_fields(data, ['from', 'sdp'])
        if error is None:
            error = ValidationUtils.validate_description(data['sdp'], expected_type)
        if error:
            raise SignalingApplyError(f"Invalid {expected_type}: {error}")

        labels = None
        if 'tracks' in data:
            labels = ValidationUtils.validate_track_labels(data['tracks'], TrackKind.values())
        return data['from'], data['sdp'], labels

    def _ensure_session(self, remote_id: str, display_name: Optional[str] = None) -> PeerSession:
        session = self.sessions.get(remote_id)
        if session is not None:
            if display_name and not session.display_name:
                session.display_name = display_name
            return session

        session = PeerSession(remote_id, self._create_connection(remote_id), display_name)
        self.sessions[remote_id] = session
        self.log_info(f"🔗 [PeerManager] Session created", {
            "remote_id": remote_id,
            "display_name": display_name,
            "total_sessions": len(self.sessions)
        })
        return session

    def _create_connection(self, remote_id: str):
        connection = self.connection_factory(remote_id)

        async def on_state(state):
            await self.handle_connection_state(remote_id, state, connection=connection)

        async def on_track(track, mid):
            await self.handle_remote_track(remote_id, track, mid, connection=connection)

        connection.add_event_callback('connection_state', on_state)
        connection.add_event_callback('track', on_track)
        return connection

    async def _send(self, action: str, data: Dict[str, Any]) -> bool:
        if self.send is None:
            self.log_warning(f"No signaling channel, {action} not sent")
            return False
        try:
            await self.send(action, data)
            return True
        except Exception as e:
            self.log_error(f"Failed to send {action}", {
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False

    async def _send_status(self, action: str, data: Dict[str, Any]):
        if self.local_id is None:
            return
        await self._send(action, {'from': self.local_id, **data})

    async def _render(self, method: str, *args):
        if self.renderer is None:
            return
        callback = getattr(self.renderer, method, None)
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log_error(f"Renderer {method} failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })

    def get_status(self) -> Dict[str, Any]:
        return {
            'local_id': self.local_id,
            'room_id': self.room_id,
            'sessions': {remote_id: session.get_status() for remote_id, session in self.sessions.items()},
            'media': self.media.get_status()
        }
