"""
Capture device access built on aiortc's MediaPlayer.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from core.config import ClientConfig
from core.exceptions import MediaAccessDenied, UserCancelled
from core.logging import LoggerMixin


@dataclass
class CaptureStream:
    """Tracks produced by one acquisition, released together."""
    video: Optional[MediaStreamTrack] = None
    audio: Optional[MediaStreamTrack] = None
    players: List[MediaPlayer] = field(default_factory=list, repr=False)

    def tracks(self) -> List[MediaStreamTrack]:
        return [track for track in (self.video, self.audio) if track is not None]

    def stop(self):
        """Stop every track; a MediaPlayer shuts down once all its tracks stop."""
        for track in self.tracks():
            track.stop()


class MediaDevices(LoggerMixin):
    """Opens camera, microphone and screen sources."""

    def __init__(self, config: ClientConfig,
                 choose_display: Optional[Callable[[str], Optional[str]]] = None):
        super().__init__()
        self.config = config
        # Optional source picker: receives the configured display and returns
        # the one to capture, or None when the user dismisses the picker.
        self.choose_display = choose_display

    async def get_user_media(self) -> CaptureStream:
        """Open the camera and microphone.

        Raises:
            MediaAccessDenied: either device could not be opened
        """
        video_player = await self._open(
            self.config.camera_device, self.config.camera_format, self.config.capture_options())
        try:
            audio_player = await self._open(self.config.audio_device, self.config.audio_format)
        except MediaAccessDenied:
            if video_player.video is not None:
                video_player.video.stop()
            raise

        stream = CaptureStream(
            video=video_player.video,
            audio=audio_player.audio,
            players=[video_player, audio_player]
        )
        if stream.video is None or stream.audio is None:
            stream.stop()
            raise MediaAccessDenied("Camera or microphone produced no track", {
                "camera_device": self.config.camera_device,
                "audio_device": self.config.audio_device
            })
        return stream

    async def get_display_media(self) -> CaptureStream:
        """Open the screen capture source.

        Raises:
            UserCancelled: the display picker was dismissed
            MediaAccessDenied: screen capture is unavailable
        """
        display = self.config.screen_device
        if self.choose_display is not None:
            display = self.choose_display(display)
            if display is None:
                raise UserCancelled("Screen share cancelled")

        if not display:
            raise MediaAccessDenied("No screen capture source configured")

        player = await self._open(display, self.config.screen_format, self.config.capture_options())
        if player.video is None:
            raise MediaAccessDenied("Screen source produced no video", {"device": display})
        return CaptureStream(video=player.video, players=[player])

    async def _open(self, device: str, fmt: str, options: Optional[dict] = None) -> MediaPlayer:
        """Open a MediaPlayer off the event loop; opening a device blocks."""
        loop = asyncio.get_running_loop()
        try:
            player = await loop.run_in_executor(
                None, lambda: MediaPlayer(device, format=fmt, options=options or {}))
        except (FFmpegError, OSError) as e:
            self.log_warning(f"Could not open capture device", {
                "device": device,
                "format": fmt,
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise MediaAccessDenied(f"Cannot open {device}", {"format": fmt}) from e

        self.log_info(f"Capture device opened", {"device": device, "format": fmt})
        return player
