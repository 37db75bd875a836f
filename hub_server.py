#!/usr/bin/env python3
"""
meshcall signaling hub server.

Serves the signaling WebSocket at /ws and hub status at /status.
"""
import asyncio
import json
import weakref
from typing import Optional

from aiohttp import web

from core.config import ServerConfig
from core.logging import setup_logging, debug_log
from hub.signaling_hub import SignalingHub


async def handle_status(request):
    """Handle status request."""
    try:
        hub = request.app['hub']
        return web.json_response(hub.get_status())
    except Exception as e:
        debug_log(f"❌ [HTTP] Status handling error", {
            "error": str(e),
            "error_type": type(e).__name__
        }, "ERROR")
        return web.json_response({'error': str(e)}, status=500)


async def handle_websocket(request):
    """Handle one participant's signaling WebSocket."""
    hub = request.app['hub']
    config = request.app['config']

    ws = web.WebSocketResponse(heartbeat=config.heartbeat)
    await ws.prepare(request)
    request.app['websockets'].add(ws)

    async def send(message):
        await ws.send_json(message)

    participant_id = hub.register(send)
    debug_log(f"✅ [WebSocket] Participant connected", {
        "participant_id": participant_id,
        "remote": request.remote
    })

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError as e:
                    debug_log(f"❌ [WebSocket] Invalid JSON from participant", {
                        "participant_id": participant_id,
                        "error": str(e)
                    }, "WARNING")
                    continue

                await hub.handle_message(participant_id, data)
            elif msg.type == web.WSMsgType.ERROR:
                debug_log(f"❌ [WebSocket] Connection error", {
                    "participant_id": participant_id,
                    "error": str(ws.exception())
                }, "WARNING")
                break
    finally:
        request.app['websockets'].discard(ws)
        await hub.disconnect(participant_id)
        debug_log(f"🔌 [WebSocket] Participant disconnected", {"participant_id": participant_id})

    return ws


async def _close_websockets(app):
    for ws in set(app['websockets']):
        await ws.close(code=1001, message=b"Server shutdown")


def create_app(config: Optional[ServerConfig] = None) -> web.Application:
    config = config or ServerConfig()

    app = web.Application()
    app['config'] = config
    app['hub'] = SignalingHub(config)
    app['websockets'] = weakref.WeakSet()

    app.router.add_get("/ws", handle_websocket)
    app.router.add_get("/status", handle_status)
    app.on_shutdown.append(_close_websockets)
    return app


async def main():
    """Main server function."""
    config = ServerConfig()
    setup_logging(config.log_level, log_file="meshcall_hub.log")
    debug_log(f"🚀 [Main] Starting meshcall hub", {"config": str(config)})

    runner = web.AppRunner(create_app(config))
    await runner.setup()
    try:
        site = web.TCPSite(runner, config.host, config.port)
        await site.start()
        debug_log(f"✅ [Main] Hub listening on {config.host}:{config.port}")
        print(f"meshcall hub started at http://{config.host}:{config.port}")

        # Run forever
        await asyncio.Future()
    finally:
        await runner.cleanup()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
