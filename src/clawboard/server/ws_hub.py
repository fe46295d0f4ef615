"""WebSocket hub that fans board change events out to connected clients.

Protocol (server → client)::

    {"type": "connected", "data": {}}
    {"type": "task_created", "data": {...task...}}
    {"type": "tasks_bulk_updated", "data": {"status_updated": 2, "status": "done"}}
    {"type": "pong", "data": {}}

Protocol (client → server)::

    {"action": "ping"}

Route handlers call :meth:`ChangeHub.broadcast`, which is safe from both
the event loop and worker threads.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger


class ChangeHub:
    def __init__(self) -> None:
        self._clients: dict[int, WebSocket] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Accept *websocket* and serve it until the client goes away."""
        # Remember the active event loop so worker threads can publish safely.
        self.attach_loop(asyncio.get_running_loop())
        await websocket.accept()
        cid = id(websocket)
        self._clients[cid] = websocket
        logger.debug("WS hub: client connected (total={})", self.client_count)
        try:
            await websocket.send_text(json.dumps({"type": "connected", "data": {}}))
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if isinstance(message, dict) and message.get("action") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong", "data": {}}))
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.pop(cid, None)
            logger.debug("WS hub: client disconnected (total={})", self.client_count)

    async def publish(self, event: dict[str, Any]) -> None:
        """Send *event* to every client, dropping those that fail."""
        payload = json.dumps(event, default=str)
        stale: list[int] = []
        for cid, ws in list(self._clients.items()):
            try:
                await ws.send_text(payload)
            except Exception:
                stale.append(cid)
        for cid in stale:
            self._clients.pop(cid, None)
        if stale:
            logger.debug("WS hub: dropped {} stale client(s)", len(stale))

    def publish_sync(self, event: dict[str, Any]) -> None:
        with self._lock:
            loop = self._loop
        if loop and loop.is_running():
            asyncio.run_coroutine_threadsafe(self.publish(event), loop)
            return
        try:
            loop = asyncio.get_running_loop()
            self.attach_loop(loop)
            loop.create_task(self.publish(event))
        except RuntimeError:
            # No loop anywhere means no connected clients to notify.
            pass

    def broadcast(self, event_type: str, data: Any) -> None:
        self.publish_sync({"type": event_type, "data": data})
