"""
pytest configuration and fixtures for meshcall tests.

The in-memory connection mimics the parts of an RTCPeerConnection the session
layer relies on: senders get a mid once they appear in a description, and
the fake SDP lists the sending mids so the far side can surface inbound tracks.
"""
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError

from core.config import ClientConfig, ServerConfig
from core.exceptions import MediaAccessDenied, UserCancelled
from hub.signaling_hub import SignalingHub
from media.controller import LocalMediaController
from media.devices import CaptureStream
from webrtc.peer_manager import PeerSessionManager
from webrtc.renderer import SessionRenderer


class FakeTrack(MediaStreamTrack):
    def __init__(self, kind: str = "video"):
        super().__init__()
        self.kind = kind

    async def recv(self):
        raise MediaStreamError


class FakeSender:
    def __init__(self, track):
        self.track = track


class FakeConnection:
    """In-memory stand-in for webrtc.connection.PeerConnection."""

    def __init__(self, remote_id: str):
        self.remote_id = remote_id
        self.senders: List[FakeSender] = []
        self.mids: Dict[FakeSender, str] = {}
        self._next_mid = 0
        self.receivers: Dict[str, FakeTrack] = {}

        self.signaling_state = "stable"
        self.local_description = None
        self.remote_description = None
        self.candidates = []
        self.rollbacks = 0
        self.offers_created = 0
        self.closed = False

        # Test knobs
        self.offer_gate = None
        self.fail_remote_description = False
        self.answer_assigns_mids = True
        self.rollback_keeps_offer = False

        self.callbacks = {'track': [], 'connection_state': []}

    def add_event_callback(self, event, callback):
        self.callbacks[event].append(callback)

    async def emit(self, event, *args):
        for callback in self.callbacks[event]:
            await callback(*args)

    @property
    def connection_state(self):
        return "closed" if self.closed else "connected"

    def add_track(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    async def replace_track(self, sender, track):
        sender.track = track

    async def remove_track(self, sender):
        sender.track = None

    def mid_for_sender(self, sender):
        return self.mids.get(sender)

    def receiver_track(self, mid):
        return self.receivers.get(mid)

    def _assign_mids(self):
        for sender in self.senders:
            if sender not in self.mids:
                self.mids[sender] = str(self._next_mid)
                self._next_mid += 1

    def _describe(self, kind):
        sending = {self.mids[s]: s.track.kind for s in self.senders
                   if s in self.mids and s.track is not None}
        return {"type": kind, "sdp": "fake " + json.dumps(sending)}

    async def create_offer(self):
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        if self.closed:
            raise RuntimeError("connection closed")
        if self.signaling_state != "stable":
            raise RuntimeError(f"cannot offer in {self.signaling_state}")
        self._assign_mids()
        self.offers_created += 1
        self.signaling_state = "have-local-offer"
        self.local_description = self._describe("offer")
        return dict(self.local_description)

    async def create_answer(self):
        if self.signaling_state != "have-remote-offer":
            raise RuntimeError(f"cannot answer in {self.signaling_state}")
        if self.answer_assigns_mids:
            self._assign_mids()
        self.signaling_state = "stable"
        self.local_description = self._describe("answer")
        return dict(self.local_description)

    async def set_remote_description(self, description):
        if self.fail_remote_description:
            raise ValueError("unparseable description")
        if description["type"] == "offer":
            if self.signaling_state != "stable":
                raise RuntimeError(f"offer in {self.signaling_state}")
            self.signaling_state = "have-remote-offer"
        else:
            if self.signaling_state != "have-local-offer":
                raise RuntimeError(f"answer in {self.signaling_state}")
            self.signaling_state = "stable"
        self.remote_description = description

        sdp = description["sdp"]
        sending = json.loads(sdp[len("fake "):]) if sdp.startswith("fake ") else {}
        for mid, kind in sending.items():
            if mid not in self.receivers:
                track = FakeTrack(kind)
                self.receivers[mid] = track
                await self.emit('track', track, mid)

    async def add_ice_candidate(self, candidate):
        self.candidates.append(candidate)

    async def rollback(self):
        if self.signaling_state != "have-local-offer":
            raise RuntimeError("nothing to roll back")
        self.rollbacks += 1
        if not self.rollback_keeps_offer:
            self.signaling_state = "stable"

    async def close(self):
        self.closed = True


class FakeMediaDevices:
    """Hands out fake capture streams; flip the flags to simulate refusal."""

    def __init__(self, make_track: Callable[[str], MediaStreamTrack] = FakeTrack):
        self.make_track = make_track
        self.deny_camera = False
        self.deny_screen = False
        self.cancel_screen = False
        self.user_media_calls = 0
        self.display_media_calls = 0

    async def get_user_media(self):
        self.user_media_calls += 1
        if self.deny_camera:
            raise MediaAccessDenied("Cannot open /dev/video0")
        return CaptureStream(video=self.make_track("video"), audio=self.make_track("audio"))

    async def get_display_media(self):
        self.display_media_calls += 1
        if self.cancel_screen:
            raise UserCancelled("Screen share cancelled")
        if self.deny_screen:
            raise MediaAccessDenied("No screen capture source configured")
        return CaptureStream(video=self.make_track("video"))


class RecordingRenderer(SessionRenderer):
    def __init__(self):
        self.events = []

    def on_peer_joined(self, remote_id, display_name):
        self.events.append(('joined', remote_id, display_name))

    def on_peer_left(self, remote_id):
        self.events.append(('left', remote_id))

    def on_peer_media_changed(self, remote_id, kind, track):
        self.events.append(('media', remote_id, kind, track))

    def on_room_full(self, room_id):
        self.events.append(('full', room_id))

    def on_peer_muted(self, remote_id, muted):
        self.events.append(('muted', remote_id, muted))

    def on_peer_screen(self, remote_id, sharing):
        self.events.append(('screen', remote_id, sharing))

    def media(self, remote_id):
        """Latest track per kind for one remote, None for removed kinds."""
        current = {}
        for event in self.events:
            if event[0] == 'media' and event[1] == remote_id:
                current[event[2]] = event[3]
        return current


class Mesh:
    """A hub and any number of managers wired in-process.

    Messages are queued per participant and delivered by ``drain()``, so a
    handler never re-enters another participant while it is still running.
    """

    def __init__(self, capacity: int = 5,
                 connection_factory: Callable[[str], Any] = FakeConnection,
                 make_track: Callable[[str], MediaStreamTrack] = FakeTrack):
        self.connection_factory = connection_factory
        self.make_track = make_track
        self.hub = SignalingHub(ServerConfig(room_capacity=capacity))
        self.inboxes: Dict[str, list] = {}
        self.managers: Dict[str, PeerSessionManager] = {}
        self.connections: Dict[str, Dict[str, Any]] = {}
        self.renderers: Dict[str, RecordingRenderer] = {}
        self.devices: Dict[str, FakeMediaDevices] = {}

    def add(self, participant_id: str) -> PeerSessionManager:
        inbox = []
        connections = {}

        async def deliver(message):
            inbox.append(message)

        def connection_factory(remote_id):
            connection = self.connection_factory(remote_id)
            connections[remote_id] = connection
            return connection

        self.hub.register(deliver, participant_id)
        devices = FakeMediaDevices(self.make_track)
        renderer = RecordingRenderer()
        manager = PeerSessionManager(
            ClientConfig(is_local=True),
            media=LocalMediaController(devices),
            connection_factory=connection_factory,
            renderer=renderer
        )

        async def send(action, data):
            await self.hub.handle_message(participant_id, {'action': action, 'data': data})

        manager.set_send(send)
        self.inboxes[participant_id] = inbox
        self.managers[participant_id] = manager
        self.connections[participant_id] = connections
        self.renderers[participant_id] = renderer
        self.devices[participant_id] = devices
        return manager

    def inbox_actions(self, participant_id: str) -> List[str]:
        return [message['action'] for message in self.inboxes[participant_id]]

    async def drain(self, limit: int = 1000):
        for _ in range(limit):
            pending = [(pid, inbox) for pid, inbox in self.inboxes.items() if inbox]
            if not pending:
                return
            for participant_id, inbox in pending:
                message = inbox.pop(0)
                await self.managers[participant_id].handle_message(message)
        raise AssertionError("signaling did not settle")

    async def join(self, participant_id: str, room_id: str = "r1",
                   display_name: Optional[str] = None) -> PeerSessionManager:
        manager = self.managers.get(participant_id) or self.add(participant_id)
        await manager.join(room_id, display_name)
        await self.drain()
        return manager

    async def disconnect(self, participant_id: str):
        await self.hub.disconnect(participant_id)
        self.inboxes.pop(participant_id, None)
        self.managers.pop(participant_id, None)
        await self.drain()

    async def close(self):
        for manager in list(self.managers.values()):
            await manager.leave()


@pytest.fixture
def mesh():
    return Mesh()


@pytest.fixture
def devices():
    return FakeMediaDevices()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def manager(devices, renderer):
    """A manager with id "m" that records what it sends instead of using a hub."""
    connections = {}

    def connection_factory(remote_id):
        connection = FakeConnection(remote_id)
        connections[remote_id] = connection
        return connection

    manager = PeerSessionManager(
        ClientConfig(is_local=True),
        media=LocalMediaController(devices),
        connection_factory=connection_factory,
        renderer=renderer
    )
    manager.sent = []
    manager.connections = connections

    async def send(action, data):
        manager.sent.append((action, data))

    manager.set_send(send)
    return manager
