"""
aiortc peer connection adapter.

Wraps one RTCPeerConnection behind the small set of operations the session
state machine needs, and turns aiortc events into callbacks.
"""
import asyncio
import datetime
from typing import Any, Callable, Dict, Optional, Set

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCPeerConnection,
    RTCRtpSender,
    RTCRtpTransceiver,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidStateError
from aiortc.sdp import candidate_from_sdp

from core.logging import LoggerMixin, debug_log

# connectionState values that end a peer session
TERMINAL_STATES = ('failed', 'disconnected', 'closed')


class PeerConnection(LoggerMixin):
    """One realtime connection to one remote participant."""

    def __init__(self, remote_id: str, rtc_config: Optional[RTCConfiguration] = None):
        super().__init__()
        self.remote_id = remote_id
        self._pc = RTCPeerConnection(configuration=rtc_config)

        # Transceivers whose sender was removed; never handed out again
        self._retired: Set[RTCRtpTransceiver] = set()
        # State the pending local offer replaced, for rollback()
        self._offer_snapshot: Optional[Dict[str, Any]] = None

        self.event_callbacks: Dict[str, Set[Callable]] = {
            'track': set(),
            'connection_state': set()
        }
        self._setup_handlers()

    def add_event_callback(self, event: str, callback: Callable):
        """Add a callback for connection events ('track', 'connection_state')."""
        if event in self.event_callbacks:
            self.event_callbacks[event].add(callback)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    def _setup_handlers(self):
        """Set up event handlers for the peer connection."""
        pc = self._pc

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            debug_log(f"🔗 [PeerConnection] Connection state changed", {
                "remote_id": self.remote_id,
                "connection_state": pc.connectionState,
                "timestamp": datetime.datetime.now().isoformat()
            }, "DEBUG", self.logger)
            await self._notify_callbacks('connection_state', pc.connectionState)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            debug_log(f"🧊 [PeerConnection] ICE connection state changed", {
                "remote_id": self.remote_id,
                "ice_state": pc.iceConnectionState
            }, "DEBUG", self.logger)

        @pc.on("signalingstatechange")
        async def on_signaling_state_change():
            debug_log(f"📡 [PeerConnection] Signaling state changed", {
                "remote_id": self.remote_id,
                "signaling_state": pc.signalingState
            }, "DEBUG", self.logger)

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            mid = self._mid_for_receiver_track(track)
            self.log_info(f"Remote track received", {
                "remote_id": self.remote_id,
                "kind": track.kind,
                "mid": mid
            })
            await self._notify_callbacks('track', track, mid)

    async def _notify_callbacks(self, event: str, *args: Any):
        for callback in list(self.event_callbacks.get(event, ())):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.log_error(f"Error in connection callback", {
                    "event": event,
                    "remote_id": self.remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    def add_track(self, track: MediaStreamTrack) -> RTCRtpSender:
        """Start sending a track.

        A receive-only slot opened by the remote is filled first; otherwise the
        track gets a transceiver of its own. Retired transceivers are skipped.
        """
        for transceiver in self._pc.getTransceivers():
            if (transceiver.kind == track.kind
                    and transceiver.sender.track is None
                    and transceiver not in self._retired
                    and not transceiver.stopped):
                transceiver.sender.replaceTrack(track)
                transceiver.direction = "sendrecv"
                return transceiver.sender
        return self._pc.addTransceiver(track, direction="sendrecv").sender

    async def replace_track(self, sender: RTCRtpSender, track: Optional[MediaStreamTrack]):
        result = sender.replaceTrack(track)
        if asyncio.iscoroutine(result):
            await result

    async def remove_track(self, sender: RTCRtpSender):
        """Stop sending on a sender and retire its transceiver.

        The transceiver keeps receiving whatever the remote sends on it; the
        next offer marks it recvonly.
        """
        await self.replace_track(sender, None)
        for transceiver in self._pc.getTransceivers():
            if transceiver.sender is sender:
                transceiver.direction = "recvonly"
                self._retired.add(transceiver)
                break

    def mid_for_sender(self, sender: RTCRtpSender) -> Optional[str]:
        """Negotiated mid of a sender's transceiver, None until negotiated."""
        for transceiver in self._pc.getTransceivers():
            if transceiver.sender is sender:
                return transceiver.mid
        return None

    def receiver_track(self, mid: str) -> Optional[MediaStreamTrack]:
        for transceiver in self._pc.getTransceivers():
            if transceiver.mid == mid:
                return transceiver.receiver.track
        return None

    def _mid_for_receiver_track(self, track: MediaStreamTrack) -> Optional[str]:
        for transceiver in self._pc.getTransceivers():
            if transceiver.receiver.track is track:
                return transceiver.mid
        return None

    async def create_offer(self) -> Dict[str, str]:
        """Create an offer and apply it as the local description."""
        self._ensure_receivers()
        snapshot = self._snapshot()
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        self._offer_snapshot = snapshot
        return self._local_description()

    async def create_answer(self) -> Dict[str, str]:
        """Create an answer and apply it as the local description."""
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._local_description()

    async def set_remote_description(self, description: Dict[str, str]):
        await self._pc.setRemoteDescription(RTCSessionDescription(
            sdp=description["sdp"],
            type=description["type"]
        ))

    async def rollback(self):
        """Discard a pending local offer and return to ``stable``.

        aiortc does not implement rollback descriptions, so the signaling state,
        the pending local description and the mids the offer assigned are
        restored from the snapshot taken before the offer was applied.

        Raises:
            InvalidStateError: there is no pending local offer to discard
        """
        pc = self._pc
        snapshot = self._offer_snapshot
        if pc.signalingState != "have-local-offer" or snapshot is None:
            raise InvalidStateError(
                f'Cannot roll back in signaling state "{pc.signalingState}"')

        self._offer_snapshot = None
        for transceiver in pc.getTransceivers():
            mid, mline_index = snapshot['transceivers'].get(transceiver, (None, None))
            transceiver._set_mid(mid)
            transceiver._set_mline_index(mline_index)
        pc._RTCPeerConnection__seenMids = snapshot['seen_mids']
        pc._RTCPeerConnection__pendingLocalDescription = snapshot['pending_local']
        pc._RTCPeerConnection__setSignalingState("stable")

        debug_log(f"↩️ [PeerConnection] Local offer rolled back", {
            "remote_id": self.remote_id,
            "signaling_state": pc.signalingState
        }, "DEBUG", self.logger)

    def _snapshot(self) -> Dict[str, Any]:
        pc = self._pc
        return {
            'transceivers': {t: (t.mid, t._get_mline_index()) for t in pc.getTransceivers()},
            'seen_mids': set(pc._RTCPeerConnection__seenMids),
            'pending_local': pc._RTCPeerConnection__pendingLocalDescription,
        }

    async def add_ice_candidate(self, candidate: Dict[str, Any]):
        candidate_str = candidate["candidate"]
        if candidate_str.startswith("candidate:"):
            candidate_str = candidate_str[len("candidate:"):]

        ice_candidate = candidate_from_sdp(candidate_str)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(ice_candidate)

    def _ensure_receivers(self):
        """Offer to receive audio and video even when we send nothing yet."""
        kinds = {transceiver.kind for transceiver in self._pc.getTransceivers()}
        for kind in ("audio", "video"):
            if kind not in kinds:
                self._pc.addTransceiver(kind, direction="recvonly")

    def _local_description(self) -> Dict[str, str]:
        description = self._pc.localDescription
        return {"type": description.type, "sdp": description.sdp}

    async def close(self):
        await self._pc.close()
