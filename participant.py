#!/usr/bin/env python3
"""
Headless meshcall participant.

Connects to the hub, joins a room, optionally publishes camera and screen,
and sinks (or records) whatever the other participants send.
"""
import asyncio
from typing import Optional

from core.config import ClientConfig
from core.exceptions import MediaError
from core.logging import setup_logging, debug_log
from webrtc.peer_manager import PeerSessionManager
from webrtc.renderer import MediaSinkRenderer
from webrtc.signaling import SignalingClient


async def main(config: Optional[ClientConfig] = None):
    """Run one participant until the hub connection ends."""
    config = config or ClientConfig()
    setup_logging(config.log_level, log_file="meshcall_participant.log")
    debug_log(f"🚀 [Main] Starting meshcall participant", {"config": str(config)})

    renderer = MediaSinkRenderer(config.record_dir)
    manager = PeerSessionManager(config, renderer=renderer)
    client = SignalingClient(config, manager)

    await client.connect()
    try:
        await manager.join(config.room_id, config.display_name)

        if config.start_camera:
            try:
                await manager.media.start_camera()
            except MediaError as e:
                debug_log(f"⚠️ [Main] Camera unavailable", {"error": str(e)}, "WARNING")
        if config.start_screen:
            try:
                await manager.media.start_screen_share()
            except MediaError as e:
                debug_log(f"⚠️ [Main] Screen share unavailable", {"error": str(e)}, "WARNING")

        await client.wait_closed()
    finally:
        await manager.leave()
        await client.close()
        await renderer.close()
        debug_log(f"👋 [Main] Participant stopped")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
