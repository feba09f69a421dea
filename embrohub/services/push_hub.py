import asyncio
from typing import Dict, Set, Any

import anyio.from_thread
import structlog
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from ..config import settings


log = structlog.get_logger()


def user_room(user_id) -> str:
    return f"user-{user_id}"


class PushHub:
    def __init__(self) -> None:
        # room name -> set of WebSocket connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        # running background sends
        self._tasks: Set[asyncio.Task] = set()

    async def join(self, room: str, ws: WebSocket) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(ws)

    async def leave(self, room: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._rooms.get(room)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._rooms.pop(room, None)

    async def send_to_room(self, room: str, event: str, payload: Any) -> None:
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = list(self._rooms.get(room, set()))
        for ws in targets:
            try:
                await ws.send_json(data)
            except Exception as e:
                # dead socket; the receive loop removes it
                log.debug("push_send_failed", room=room, push_event=event, error=str(e))

    def schedule(self, room: str, event: str, payload: Any) -> None:
        """Start a room send in the background. Must be called on the event loop."""
        task = asyncio.get_running_loop().create_task(self.send_to_room(room, event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


# Global singleton hub
hub = PushHub()


class PushChannel:
    """Real-time event sink used by services. Never raises."""

    def emit(self, room: str, event: str, payload: Any) -> None:
        raise NotImplementedError


class HubPushChannel(PushChannel):
    """Emits onto the websocket hub from a sync (threadpool) request handler."""

    def __init__(self, push_hub: PushHub = hub):
        self.hub = push_hub

    def emit(self, room: str, event: str, payload: Any) -> None:
        if not settings.enable_push:
            return
        try:
            anyio.from_thread.run_sync(self.hub.schedule, room, event, jsonable_encoder(payload))
        except Exception as e:
            log.warning("push_failed", room=room, push_event=event, error=str(e))


class NullPushChannel(PushChannel):
    def emit(self, room: str, event: str, payload: Any) -> None:
        return None


def get_push() -> PushChannel:
    return HubPushChannel()
