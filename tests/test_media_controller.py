"""
Tests for the local media controller, with and without live peer sessions.
"""
import asyncio

import pytest

from core.exceptions import MediaAccessDenied, UserCancelled
from media.controller import LocalMediaController
from media.tracks import MutableAudioTrack, TrackKind


class Recorder:
    def __init__(self):
        self.changes = 0
        self.status = []

    async def tracks_changed(self):
        self.changes += 1

    async def send_status(self, action, data):
        self.status.append((action, data))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def controller(devices, recorder):
    return LocalMediaController(devices, recorder.tracks_changed, recorder.send_status)


class TestCamera:

    async def test_start_camera_publishes_tracks(self, controller, recorder):
        await controller.start_camera()

        tracks = controller.local_tracks()
        assert set(tracks) == {TrackKind.CAMERA_VIDEO, TrackKind.CAMERA_AUDIO}
        assert isinstance(tracks[TrackKind.CAMERA_AUDIO], MutableAudioTrack)
        assert controller.state.camera_active
        assert recorder.changes == 1
        assert recorder.status == [('mute', {'muted': False})]

    async def test_start_camera_twice_is_idempotent(self, controller, devices, recorder):
        await controller.start_camera()
        first = controller.local_tracks()
        await controller.start_camera()

        assert controller.local_tracks() == first
        assert devices.user_media_calls == 1
        assert recorder.changes == 1

    async def test_concurrent_starts_acquire_once(self, controller, devices):
        await asyncio.gather(controller.start_camera(), controller.start_camera())
        assert devices.user_media_calls == 1

    async def test_access_denied_leaves_state_unchanged(self, controller, devices, recorder):
        devices.deny_camera = True
        with pytest.raises(MediaAccessDenied):
            await controller.start_camera()

        assert controller.state.camera_active is False
        assert controller.has_tracks() is False
        assert recorder.changes == 0
        assert recorder.status == []

    async def test_stop_camera_releases_tracks(self, controller, recorder):
        await controller.start_camera()
        video = controller.local_tracks()[TrackKind.CAMERA_VIDEO]

        await controller.stop_camera()

        assert video.readyState == "ended"
        assert controller.local_tracks() == {}
        assert recorder.status[-1] == ('mute', {'muted': True})

        await controller.stop_camera()
        assert recorder.changes == 2


class TestMicrophone:

    async def test_mute_flips_enabled_without_renegotiating(self, controller, recorder):
        await controller.start_camera()
        mic = controller.local_tracks()[TrackKind.CAMERA_AUDIO]

        await controller.set_mic_enabled(False)

        assert mic.enabled is False
        assert controller.local_tracks()[TrackKind.CAMERA_AUDIO] is mic
        assert recorder.changes == 1
        assert recorder.status[-1] == ('mute', {'muted': True})

    async def test_mute_before_camera_is_remembered(self, controller, recorder):
        await controller.set_mic_enabled(False)
        assert recorder.status == []

        await controller.start_camera()
        assert controller.local_tracks()[TrackKind.CAMERA_AUDIO].enabled is False
        assert recorder.status == [('mute', {'muted': True})]


class TestScreenShare:

    async def test_start_and_stop(self, controller, recorder):
        await controller.start_screen_share()
        assert TrackKind.SCREEN_VIDEO in controller.local_tracks()
        assert recorder.status[-1] == ('screen-status', {'sharing': True})

        await controller.stop_screen_share()
        assert TrackKind.SCREEN_VIDEO not in controller.local_tracks()
        assert recorder.status[-1] == ('screen-status', {'sharing': False})

    async def test_cancelled_picker(self, controller, devices):
        devices.cancel_screen = True
        with pytest.raises(UserCancelled):
            await controller.start_screen_share()
        assert controller.state.screen_active is False

    async def test_denied_screen(self, controller, devices):
        devices.deny_screen = True
        with pytest.raises(MediaAccessDenied):
            await controller.start_screen_share()

    async def test_source_ending_stops_the_share(self, controller, recorder):
        await controller.start_screen_share()
        screen = controller.local_tracks()[TrackKind.SCREEN_VIDEO]

        screen.stop()
        for _ in range(5):
            await asyncio.sleep(0)

        assert controller.state.screen_active is False
        assert recorder.status[-1] == ('screen-status', {'sharing': False})

    async def test_stale_ended_event_is_ignored(self, controller, recorder):
        await controller.start_screen_share()
        old = controller.local_tracks()[TrackKind.SCREEN_VIDEO]
        await controller.stop_screen_share()
        await controller.start_screen_share()
        changes = recorder.changes

        old.emit("ended")
        for _ in range(5):
            await asyncio.sleep(0)

        assert controller.state.screen_active is True
        assert recorder.changes == changes


async def test_release_stops_everything_quietly(controller, recorder):
    await controller.start_camera()
    await controller.start_screen_share()
    tracks = list(controller.local_tracks().values())
    changes, status = recorder.changes, list(recorder.status)

    await controller.release()

    assert controller.local_tracks() == {}
    assert all(track.readyState == "ended" for track in tracks)
    assert recorder.changes == changes
    assert recorder.status == status


class TestWithSessions:
    """Sender identity across media changes, seen through a peer session."""

    async def _stable_session(self, manager):
        await manager.handle_message({'action': 'joined', 'data': {
            'roomId': 'r1', 'you': 'm', 'peers': [{'id': 'a', 'displayName': 'A'}]}})
        return manager.sessions["a"]

    async def _answer(self, manager):
        await manager.handle_message({'action': 'answer', 'data': {
            'from': 'a', 'sdp': {'type': 'answer', 'sdp': 'fake {}'}, 'tracks': {}}})

    async def test_camera_sender_identity_survives_second_start(self, manager):
        session = await self._stable_session(manager)
        await manager.media.start_camera()
        await self._answer(manager)
        sender = session.senders[TrackKind.CAMERA_VIDEO]

        await manager.media.start_camera()

        assert session.senders[TrackKind.CAMERA_VIDEO] is sender
        assert len(manager.connections["a"].senders) == 2

    async def test_screen_restart_gets_a_fresh_sender(self, manager):
        session = await self._stable_session(manager)
        await manager.media.start_screen_share()
        await self._answer(manager)
        first = session.senders[TrackKind.SCREEN_VIDEO]

        await manager.media.stop_screen_share()
        await self._answer(manager)
        assert TrackKind.SCREEN_VIDEO not in session.senders

        await manager.media.start_screen_share()
        await self._answer(manager)
        second = session.senders[TrackKind.SCREEN_VIDEO]
        assert second is not first
        assert second.track is manager.media.local_tracks()[TrackKind.SCREEN_VIDEO]
        assert first.track is None
