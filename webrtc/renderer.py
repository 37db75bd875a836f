"""
Presentation side of a call: what happens to remote participants' media.
"""
import os
from typing import Dict, Optional, Tuple

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from core.logging import LoggerMixin
from media.tracks import TrackKind


class SessionRenderer:
    """Receives peer session events. Every hook is optional; methods may be coroutines."""

    def on_peer_joined(self, remote_id: str, display_name: Optional[str]):
        pass

    def on_peer_left(self, remote_id: str):
        pass

    def on_peer_media_changed(self, remote_id: str, kind: TrackKind,
                              track: Optional[MediaStreamTrack]):
        """``track`` is None when the remote stopped sending that kind."""
        pass

    def on_room_full(self, room_id: str):
        pass

    def on_peer_muted(self, remote_id: str, muted: bool):
        pass

    def on_peer_screen(self, remote_id: str, sharing: bool):
        pass


class MediaSinkRenderer(LoggerMixin, SessionRenderer):
    """Consumes every remote track: records it to ``record_dir`` or discards it."""

    def __init__(self, record_dir: Optional[str] = None):
        super().__init__()
        self.record_dir = record_dir
        self.sinks: Dict[Tuple[str, TrackKind], object] = {}

    async def on_peer_joined(self, remote_id: str, display_name: Optional[str]):
        self.log_info(f"👋 [Renderer] Peer joined", {"remote_id": remote_id, "display_name": display_name})

    async def on_peer_left(self, remote_id: str):
        for key in [key for key in self.sinks if key[0] == remote_id]:
            await self._stop_sink(key)
        self.log_info(f"👋 [Renderer] Peer left", {"remote_id": remote_id})

    async def on_peer_media_changed(self, remote_id: str, kind: TrackKind,
                                    track: Optional[MediaStreamTrack]):
        key = (remote_id, kind)
        await self._stop_sink(key)
        if track is None:
            self.log_info(f"📺 [Renderer] Remote media removed", {"remote_id": remote_id, "kind": kind.value})
            return

        sink = self._create_sink(remote_id, kind)
        sink.addTrack(track)
        await sink.start()
        self.sinks[key] = sink
        self.log_info(f"📺 [Renderer] Remote media attached", {
            "remote_id": remote_id,
            "kind": kind.value,
            "sink": type(sink).__name__
        })

    def on_room_full(self, room_id: str):
        self.log_warning(f"🚪 [Renderer] Room is full", {"room_id": room_id})

    def on_peer_muted(self, remote_id: str, muted: bool):
        self.log_info(f"🎙️ [Renderer] Peer {'muted' if muted else 'unmuted'}", {"remote_id": remote_id})

    def on_peer_screen(self, remote_id: str, sharing: bool):
        self.log_info(f"🖥️ [Renderer] Peer screen share {'on' if sharing else 'off'}", {"remote_id": remote_id})

    def _create_sink(self, remote_id: str, kind: TrackKind):
        if not self.record_dir:
            return MediaBlackhole()
        os.makedirs(self.record_dir, exist_ok=True)
        extension = "wav" if kind is TrackKind.CAMERA_AUDIO else "mp4"
        return MediaRecorder(os.path.join(self.record_dir, f"{remote_id}-{kind.value}.{extension}"))

    async def _stop_sink(self, key: Tuple[str, TrackKind]):
        sink = self.sinks.pop(key, None)
        if sink is None:
            return
        try:
            await sink.stop()
        except Exception as e:
            self.log_warning(f"Failed to stop media sink", {
                "remote_id": key[0],
                "kind": key[1].value,
                "error": str(e)
            })

    async def close(self):
        for key in list(self.sinks):
            await self._stop_sink(key)
