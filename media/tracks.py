"""
Local track kinds, local media state and the switchable microphone track.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List

from aiortc import MediaStreamTrack
from av import AudioFrame


class TrackKind(str, Enum):
    """Category of an outgoing media channel."""
    CAMERA_VIDEO = "camera-video"
    CAMERA_AUDIO = "camera-audio"
    SCREEN_VIDEO = "screen-video"

    @classmethod
    def values(cls) -> List[str]:
        return [kind.value for kind in cls]


@dataclass
class LocalMediaState:
    """What local media exists right now."""
    camera_active: bool = False
    screen_active: bool = False
    mic_enabled: bool = True


class MutableAudioTrack(MediaStreamTrack):
    """Relays microphone frames and sends silence while disabled.

    Muting flips ``enabled`` instead of removing the track, so peers keep the
    same sender and no renegotiation is needed.
    """
    kind = "audio"

    def __init__(self, track: MediaStreamTrack):
        super().__init__()
        self.track = track
        self.enabled = True

    async def recv(self) -> AudioFrame:
        frame = await self.track.recv()
        if not self.enabled:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def stop(self):
        super().stop()
        self.track.stop()
