"""
Tests for environment-driven configuration and payload validation.
"""
from aiortc import RTCConfiguration

from core.config import ClientConfig, ServerConfig
from core.exceptions import MeshCallError, RoomFullError
from core.validation_utils import ValidationUtils
from media.tracks import TrackKind


class TestServerConfig:

    def test_defaults(self, monkeypatch):
        for name in ("MESH_HOST", "MESH_PORT", "MESH_ROOM_CAPACITY"):
            monkeypatch.delenv(name, raising=False)
        config = ServerConfig()
        assert config.port == 8765
        assert config.room_capacity == 5

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MESH_PORT", "9000")
        monkeypatch.setenv("MESH_ROOM_CAPACITY", "3")
        config = ServerConfig()
        assert config.port == 9000
        assert config.room_capacity == 3


class TestClientConfig:

    def test_local_config_uses_stun_only(self, monkeypatch):
        monkeypatch.setenv("TURN_ADDRESS", "turn.example.com:3478")
        config = ClientConfig(is_local=True)
        assert isinstance(config.rtc_config, RTCConfiguration)
        assert [s.urls for s in config.rtc_config.iceServers] == ["stun:stun.l.google.com:19302"]

    def test_turn_added_when_remote(self, monkeypatch):
        monkeypatch.setenv("IS_LOCAL", "false")
        monkeypatch.setenv("TURN_ADDRESS", "turn.example.com:3478")
        monkeypatch.setenv("TURN_USERNAME", "mesh")
        config = ClientConfig()

        turn = config.rtc_config.iceServers[-1]
        assert turn.urls == "turn:turn.example.com:3478"
        assert turn.username == "mesh"

    def test_media_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("MESH_CAMERA_DEVICE", "/dev/video2")
        monkeypatch.setenv("MESH_FRAMERATE", "15")
        monkeypatch.setenv("MESH_START_CAMERA", "TRUE")
        config = ClientConfig()
        assert config.camera_device == "/dev/video2"
        assert config.capture_options() == {'video_size': config.video_size, 'framerate': '15'}
        assert config.start_camera is True


class TestValidation:

    def test_required_fields(self):
        assert ValidationUtils.validate_required_fields({'to': 'a'}, ['to']) is None
        assert "Missing" in ValidationUtils.validate_required_fields({'to': None}, ['to'])
        assert "Expected an object" in ValidationUtils.validate_required_fields([], ['to'])

    def test_description(self):
        assert ValidationUtils.validate_description({'type': 'offer', 'sdp': 'v=0'}, 'offer') is None
        assert ValidationUtils.validate_description({'type': 'offer', 'sdp': ''}, 'offer') == "Empty SDP"
        assert ValidationUtils.validate_description({'type': 'answer', 'sdp': 'v=0'}, 'offer') is not None

    def test_candidate(self):
        ok = {'candidate': 'candidate:1 1 udp 1 10.0.0.1 9 typ host', 'sdpMLineIndex': 0}
        assert ValidationUtils.validate_candidate(ok) is None
        assert ValidationUtils.validate_candidate({'candidate': '   ', 'sdpMid': '0'}) is not None
        assert ValidationUtils.validate_candidate("candidate:1") is not None

    def test_track_labels_keep_known_kinds(self):
        labels = {'0': 'camera-video', 1: 'screen-video', '2': 'hologram', '3': None}
        assert ValidationUtils.validate_track_labels(labels, TrackKind.values()) == {
            '0': 'camera-video', '1': 'screen-video'}
        assert ValidationUtils.validate_track_labels("nope", TrackKind.values()) == {}


def test_exception_details_in_message():
    error = RoomFullError("r1", 5)
    assert isinstance(error, MeshCallError)
    assert "r1" in str(error)
    assert str(MeshCallError("plain")) == "plain"
