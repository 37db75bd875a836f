"""
Configuration management for the meshcall hub and participants.
"""
import os
from dataclasses import dataclass
from typing import Optional

from aiortc import RTCConfiguration, RTCIceServer


def _env_flag(name: str, default: bool) -> bool:
    return os.environ.get(name, 'true' if default else 'false').lower() == 'true'


@dataclass
class ServerConfig:
    """Signaling hub settings."""

    host: str = "0.0.0.0"
    port: int = 8765

    # Maximum participants per room
    room_capacity: int = 5

    # WebSocket heartbeat interval (seconds)
    heartbeat: float = 30.0

    log_level: str = "INFO"

    def __post_init__(self):
        """Overlay environment variables on the given values."""
        self.host = os.environ.get('MESH_HOST', self.host)
        self.port = int(os.environ.get('MESH_PORT', self.port))
        self.room_capacity = int(os.environ.get('MESH_ROOM_CAPACITY', self.room_capacity))
        self.heartbeat = float(os.environ.get('MESH_HEARTBEAT', self.heartbeat))
        self.log_level = os.environ.get('MESH_LOG_LEVEL', self.log_level)

    def __str__(self) -> str:
        return f"ServerConfig(host={self.host}, port={self.port}, room_capacity={self.room_capacity})"


@dataclass
class ClientConfig:
    """Participant settings: signaling endpoint, ICE servers and capture devices."""

    signaling_url: str = "ws://localhost:8765/ws"
    room_id: str = "lobby"
    display_name: Optional[str] = None

    # Environment detection
    is_local: bool = False

    # TURN server configuration
    turn_address: Optional[str] = None
    turn_username: str = "user"
    turn_password: str = "password"

    # Camera + microphone (ffmpeg input names for aiortc's MediaPlayer)
    camera_device: str = "/dev/video0"
    camera_format: str = "v4l2"
    audio_device: str = "default"
    audio_format: str = "pulse"

    # Screen capture
    screen_device: str = ":0.0"
    screen_format: str = "x11grab"

    video_size: str = "640x480"
    framerate: int = 30

    # Directory to record inbound media to; None sinks it
    record_dir: Optional[str] = None

    start_camera: bool = False
    start_screen: bool = False

    log_level: str = "INFO"

    # WebRTC configuration
    rtc_config: Optional[RTCConfiguration] = None

    def __post_init__(self):
        """Overlay environment variables on the given values."""
        self.signaling_url = os.environ.get('MESH_SIGNALING_URL', self.signaling_url)
        self.room_id = os.environ.get('MESH_ROOM', self.room_id)
        self.display_name = os.environ.get('MESH_DISPLAY_NAME', self.display_name)
        self.is_local = _env_flag('IS_LOCAL', self.is_local)

        # TURN server settings
        self.turn_address = os.environ.get('TURN_ADDRESS', self.turn_address)
        self.turn_username = os.environ.get('TURN_USERNAME', self.turn_username)
        self.turn_password = os.environ.get('TURN_PASSWORD', self.turn_password)

        # Capture devices
        self.camera_device = os.environ.get('MESH_CAMERA_DEVICE', self.camera_device)
        self.camera_format = os.environ.get('MESH_CAMERA_FORMAT', self.camera_format)
        self.audio_device = os.environ.get('MESH_AUDIO_DEVICE', self.audio_device)
        self.audio_format = os.environ.get('MESH_AUDIO_FORMAT', self.audio_format)
        self.screen_device = os.environ.get('MESH_SCREEN_DEVICE', self.screen_device)
        self.screen_format = os.environ.get('MESH_SCREEN_FORMAT', self.screen_format)
        self.video_size = os.environ.get('MESH_VIDEO_SIZE', self.video_size)
        self.framerate = int(os.environ.get('MESH_FRAMERATE', self.framerate))

        self.record_dir = os.environ.get('MESH_RECORD_DIR', self.record_dir)
        self.start_camera = _env_flag('MESH_START_CAMERA', self.start_camera)
        self.start_screen = _env_flag('MESH_START_SCREEN', self.start_screen)
        self.log_level = os.environ.get('MESH_LOG_LEVEL', self.log_level)

        # Build WebRTC configuration
        if self.rtc_config is None:
            self._build_rtc_config()

    def _build_rtc_config(self):
        """Build WebRTC configuration based on environment."""
        ice_servers = [
            RTCIceServer(urls="stun:stun.l.google.com:19302")
        ]

        if not self.is_local and self.turn_address:
            ice_servers.append(
                RTCIceServer(
                    urls=f"turn:{self.turn_address}",
                    username=self.turn_username,
                    credential=self.turn_password
                )
            )

        self.rtc_config = RTCConfiguration(iceServers=ice_servers)

    def capture_options(self) -> dict:
        """ffmpeg input options shared by camera and screen capture."""
        return {'video_size': self.video_size, 'framerate': str(self.framerate)}

    def __str__(self) -> str:
        return (f"ClientConfig(signaling_url={self.signaling_url}, room_id={self.room_id}, "
                f"is_local={self.is_local})")
