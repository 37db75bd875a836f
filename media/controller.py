"""
Local media lifecycle: acquire and release the camera and screen sources and
tell the peer session layer when the set of local tracks changed.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from aiortc import MediaStreamTrack

from core.logging import LoggerMixin
from media.devices import CaptureStream, MediaDevices
from media.tracks import LocalMediaState, MutableAudioTrack, TrackKind


class LocalMediaController(LoggerMixin):
    """Owns the local camera and screen captures.

    ``on_tracks_changed`` is awaited after every change in the set of local
    tracks; ``send_status`` publishes presentation status (mute and
    screen-sharing indicators) and never triggers renegotiation.
    """

    def __init__(self, devices: MediaDevices,
                 on_tracks_changed: Optional[Callable[[], Awaitable[None]]] = None,
                 send_status: Optional[Callable[[str, Dict[str, Any]], Awaitable[None]]] = None):
        super().__init__()
        self.devices = devices
        self.on_tracks_changed = on_tracks_changed
        self.send_status = send_status

        self.state = LocalMediaState()
        self._camera: Optional[CaptureStream] = None
        self._mic: Optional[MutableAudioTrack] = None
        self._screen: Optional[CaptureStream] = None

        self._camera_lock = asyncio.Lock()
        self._screen_lock = asyncio.Lock()

    def set_tracks_changed_callback(self, callback: Callable[[], Awaitable[None]]):
        self.on_tracks_changed = callback

    def set_send_status(self, send_status: Callable[[str, Dict[str, Any]], Awaitable[None]]):
        self.send_status = send_status

    def local_tracks(self) -> Dict[TrackKind, MediaStreamTrack]:
        """Current outgoing tracks by kind."""
        tracks: Dict[TrackKind, MediaStreamTrack] = {}
        if self._camera is not None:
            tracks[TrackKind.CAMERA_VIDEO] = self._camera.video
            tracks[TrackKind.CAMERA_AUDIO] = self._mic
        if self._screen is not None:
            tracks[TrackKind.SCREEN_VIDEO] = self._screen.video
        return tracks

    def has_tracks(self) -> bool:
        return self._camera is not None or self._screen is not None

    async def start_camera(self):
        """Acquire camera and microphone. No-op if already active.

        Raises:
            MediaAccessDenied: the devices could not be opened
        """
        async with self._camera_lock:
            if self._camera is not None:
                return

            stream = await self.devices.get_user_media()
            mic = MutableAudioTrack(stream.audio)
            mic.enabled = self.state.mic_enabled

            self._camera = stream
            self._mic = mic
            self.state.camera_active = True

        self.log_info(f"📷 [Media] Camera started", {"mic_enabled": self.state.mic_enabled})
        await self._tracks_changed()
        await self._publish('mute', {'muted': not self.state.mic_enabled})

    async def stop_camera(self):
        """Release camera and microphone. No-op if not active."""
        async with self._camera_lock:
            stream, mic = self._camera, self._mic
            if stream is None:
                return
            self._camera = None
            self._mic = None
            self.state.camera_active = False

        mic.stop()
        stream.stop()

        self.log_info(f"📷 [Media] Camera stopped")
        await self._tracks_changed()
        await self._publish('mute', {'muted': True})

    async def set_mic_enabled(self, enabled: bool):
        """Mute or unmute the outgoing audio without renegotiating."""
        self.state.mic_enabled = enabled
        if self._mic is None:
            return

        self._mic.enabled = enabled
        self.log_info(f"🎙️ [Media] Microphone {'enabled' if enabled else 'muted'}")
        await self._publish('mute', {'muted': not enabled})

    async def start_screen_share(self):
        """Acquire the screen source. No-op if already active.

        Raises:
            MediaAccessDenied: screen capture is unavailable
            UserCancelled: the user dismissed the source picker
        """
        async with self._screen_lock:
            if self._screen is not None:
                return

            stream = await self.devices.get_display_media()
            self._screen = stream
            self.state.screen_active = True

            # Capture ended outside our control (source closed): same as stop
            @stream.video.on("ended")
            async def on_ended():
                await self._on_screen_ended(stream)

        self.log_info(f"🖥️ [Media] Screen share started")
        await self._tracks_changed()
        await self._publish('screen-status', {'sharing': True})

    async def stop_screen_share(self):
        """Release the screen source. No-op if not active."""
        async with self._screen_lock:
            stream = self._screen
            if stream is None:
                return
            self._screen = None
            self.state.screen_active = False

        stream.stop()

        self.log_info(f"🖥️ [Media] Screen share stopped")
        await self._tracks_changed()
        await self._publish('screen-status', {'sharing': False})

    async def _on_screen_ended(self, stream: CaptureStream):
        if self._screen is stream:
            self.log_info(f"🖥️ [Media] Screen capture ended by the source")
            await self.stop_screen_share()

    async def release(self):
        """Stop all local media without renegotiating (used when leaving)."""
        # Waits for any acquisition in flight so its result is released too
        async with self._camera_lock, self._screen_lock:
            camera, mic, screen = self._camera, self._mic, self._screen
            self._camera = self._mic = self._screen = None
            self.state.camera_active = False
            self.state.screen_active = False

        if mic is not None:
            mic.stop()
        for stream in (camera, screen):
            if stream is not None:
                stream.stop()

    async def _tracks_changed(self):
        if self.on_tracks_changed is not None:
            await self.on_tracks_changed()

    async def _publish(self, action: str, data: Dict[str, Any]):
        if self.send_status is None:
            return
        try:
            await self.send_status(action, data)
        except Exception as e:
            self.log_warning(f"Failed to publish media status", {
                "action": action,
                "error": str(e),
                "error_type": type(e).__name__
            })

    def get_status(self) -> Dict[str, Any]:
        return {
            'camera_active': self.state.camera_active,
            'screen_active': self.state.screen_active,
            'mic_enabled': self.state.mic_enabled,
            'tracks': [kind.value for kind in self.local_tracks()]
        }
