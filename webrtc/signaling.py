"""
Participant side of the signaling channel.

- connect: open the hub WebSocket and start listening
- send: put one {action, data} envelope on the channel
- listen: decode every frame and hand it to the peer session manager
"""
import asyncio
import datetime
import json
from typing import Any, Dict, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from core.config import ClientConfig
from core.exceptions import MeshCallError
from core.logging import LoggerMixin, debug_log
from webrtc.peer_manager import PeerSessionManager


class SignalingClient(LoggerMixin):
    """WebSocket channel between one participant and the hub."""

    def __init__(self, config: ClientConfig, manager: PeerSessionManager):
        super().__init__()
        self.config = config
        self.manager = manager
        self._websocket = None
        self._listen_task: Optional[asyncio.Task] = None

        self.stats = {
            'messages_sent': 0,
            'messages_received': 0,
            'decode_errors': 0
        }

        manager.set_send(self.send)

    @property
    def connected(self) -> bool:
        return self._websocket is not None and self._listen_task is not None and not self._listen_task.done()

    async def connect(self):
        debug_log(f"🔌 [SignalingClient] Connecting to hub", {"url": self.config.signaling_url})
        self._websocket = await connect(
            self.config.signaling_url,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=10
        )
        self._listen_task = asyncio.create_task(self._listen())
        debug_log(f"✅ [SignalingClient] Connected", {
            "url": self.config.signaling_url,
            "timestamp": datetime.datetime.now().isoformat()
        })

    async def send(self, action: str, data: Dict[str, Any]):
        if self._websocket is None:
            raise MeshCallError("Signaling channel is not connected", {"action": action})
        await self._websocket.send(json.dumps({'action': action, 'data': data}))
        self.stats['messages_sent'] += 1

    async def _listen(self):
        """Handle hub messages one at a time, in arrival order."""
        try:
            async for raw in self._websocket:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    self.stats['decode_errors'] += 1
                    self.log_warning(f"Undecodable frame from hub", {"error": str(e)})
                    continue

                self.stats['messages_received'] += 1
                await self.manager.handle_message(message)
        except ConnectionClosed as e:
            self.log_info(f"🔌 [SignalingClient] Hub connection closed", {
                "code": e.rcvd.code if e.rcvd else None
            })

    async def wait_closed(self):
        """Block until the hub connection ends."""
        if self._listen_task is not None:
            await self._listen_task

    async def close(self):
        if self._websocket is not None:
            await self._websocket.close()
        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        self._websocket = None

    def get_status(self) -> Dict[str, Any]:
        return {
            'url': self.config.signaling_url,
            'connected': self.connected,
            **self.stats
        }
