"""
Per-remote-participant session: negotiation state, outgoing senders and
classified inbound tracks.
"""
import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from aiortc import MediaStreamTrack

from core.logging import LoggerMixin
from media.tracks import TrackKind


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFERING = "offering"
    ANSWER_PENDING = "answer-pending"
    STABLE = "stable"
    CLOSED = "closed"


class PeerSession(LoggerMixin):
    """State held for one remote participant.

    The connection is any object with the PeerConnection interface; tests
    substitute an in-memory one.
    """

    def __init__(self, remote_id: str, connection: Any, display_name: Optional[str] = None):
        super().__init__()
        self.remote_id = remote_id
        self.display_name = display_name
        self.connection = connection

        self.negotiation_state = NegotiationState.IDLE
        self.senders: Dict[TrackKind, Any] = {}
        self._sent_tracks: Dict[TrackKind, MediaStreamTrack] = {}

        # Inbound side
        self.remote_tracks: Dict[TrackKind, MediaStreamTrack] = {}
        self.remote_labels: Dict[str, TrackKind] = {}
        self.labeled = False

        # Set when a renegotiation was requested while one was in flight
        self.renegotiate_pending = False
        # True once any offer/answer exchange completed on this connection
        self.negotiated = False

        self.lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.negotiation_state is NegotiationState.CLOSED

    def transition(self, new_state: NegotiationState):
        if self.closed or new_state is self.negotiation_state:
            return
        self.log_debug(f"Negotiation state {self.negotiation_state.value} -> {new_state.value}", {
            "remote_id": self.remote_id
        })
        self.negotiation_state = new_state

    async def sync_senders(self, local_tracks: Dict[TrackKind, MediaStreamTrack]) -> bool:
        """Make the senders match the local tracks. Returns True if a sender was added.

        Existing senders are reused: a changed track is swapped in place and an
        unchanged one is left alone.
        """
        added = False
        for kind in TrackKind:
            track = local_tracks.get(kind)
            sender = self.senders.get(kind)

            if track is None:
                if sender is not None:
                    await self.connection.remove_track(sender)
                    del self.senders[kind]
                    self._sent_tracks.pop(kind, None)
                continue

            if sender is None:
                self.senders[kind] = self.connection.add_track(track)
                added = True
            elif self._sent_tracks.get(kind) is not track:
                await self.connection.replace_track(sender, track)
            self._sent_tracks[kind] = track

        return added

    def outgoing_labels(self) -> Dict[str, str]:
        """{mid: kind} for every negotiated sender."""
        labels = {}
        for kind, sender in self.senders.items():
            mid = self.connection.mid_for_sender(sender)
            if mid is not None:
                labels[mid] = kind.value
        return labels

    def unnegotiated_senders(self) -> List[TrackKind]:
        return [kind for kind, sender in self.senders.items()
                if self.connection.mid_for_sender(sender) is None]

    def expect_labels(self, labels: Optional[Dict[str, str]]):
        """Record the sender's {mid: kind} map ahead of applying its description.

        ``None`` means the remote does not label its tracks; arrival order is
        used instead.
        """
        if labels is None:
            return
        self.labeled = True
        self.remote_labels = {mid: TrackKind(kind) for mid, kind in labels.items()}

    def classify_remote_track(self, track: MediaStreamTrack, mid: Optional[str]) -> Optional[TrackKind]:
        if self.labeled:
            return self.remote_labels.get(mid) if mid is not None else None

        if track.kind == "audio":
            return TrackKind.CAMERA_AUDIO
        if track.kind == "video":
            # Unlabeled: first video is the camera, second the screen
            for kind in (TrackKind.CAMERA_VIDEO, TrackKind.SCREEN_VIDEO):
                current = self.remote_tracks.get(kind)
                if current is None or current is track:
                    return kind
        return None

    def reconcile_remote_tracks(self) -> List[Tuple[TrackKind, Optional[MediaStreamTrack]]]:
        """Align remote tracks with the latest labels after a description was applied.

        Returns the (kind, track) changes; track is None for a kind that is
        gone. Unlabeled remotes are left to the track events.
        """
        if not self.labeled:
            return []

        changes: List[Tuple[TrackKind, Optional[MediaStreamTrack]]] = []
        labeled_kinds = set(self.remote_labels.values())
        for kind in list(self.remote_tracks):
            if kind not in labeled_kinds:
                del self.remote_tracks[kind]
                changes.append((kind, None))

        # A reused transceiver keeps its receiver track and fires no new event
        for mid, kind in self.remote_labels.items():
            track = self.connection.receiver_track(mid)
            if track is not None and self.remote_tracks.get(kind) is not track:
                self.remote_tracks[kind] = track
                changes.append((kind, track))
        return changes

    async def replace_connection(self, connection: Any):
        """Swap in a fresh connection, discarding everything tied to the old one."""
        old = self.connection
        self.connection = connection
        self.senders.clear()
        self._sent_tracks.clear()
        self.negotiated = False
        self.negotiation_state = NegotiationState.IDLE
        await old.close()

    async def close(self):
        if self.closed:
            return
        self.negotiation_state = NegotiationState.CLOSED
        self.senders.clear()
        self._sent_tracks.clear()
        self.remote_tracks.clear()
        self.renegotiate_pending = False
        await self.connection.close()

    def get_status(self) -> Dict[str, Any]:
        return {
            'remote_id': self.remote_id,
            'display_name': self.display_name,
            'state': self.negotiation_state.value,
            'senders': [kind.value for kind in self.senders],
            'remote_tracks': [kind.value for kind in self.remote_tracks],
            'renegotiate_pending': self.renegotiate_pending
        }
