import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, user_from_token
from ..db import get_db, session_scope
from ..exceptions import NotFoundError
from ..models.models import User
from ..services import notifications as inbox
from ..services.push_hub import hub, user_room
from .common import ok


router = APIRouter(prefix="/notifications", tags=["notifications"])
realtime_router = APIRouter(tags=["realtime"])
log = structlog.get_logger()


@router.get("")
def list_notifications(
    limit: int = 50,
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items = inbox.list_for_user(db, user, limit=max(1, min(200, limit)), unread_only=unread_only)
    return ok(
        notifications=[inbox.notification_to_dict(n) for n in items],
        unreadCount=inbox.unread_count(db, user),
    )


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(unreadCount=inbox.unread_count(db, user))


@router.put("/read-all")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    updated = inbox.mark_all_read(db, user)
    return ok(message="All notifications marked as read", updated=updated)


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        nid = uuid.UUID(notification_id)
    except ValueError:
        raise NotFoundError("Notification", notification_id)
    n = inbox.mark_read(db, user, nid)
    return ok(notification=inbox.notification_to_dict(n))


@realtime_router.websocket("/ws/notifications")
async def ws_notifications(websocket: WebSocket, token: Optional[str] = None):
    """Joins the caller's room; pushes arrive as {"event", "data"} frames."""
    if not token:
        await websocket.close(code=4401)
        return
    try:
        with session_scope() as db:
            user = user_from_token(db, token)
            user_id = user.id
            unread = inbox.unread_count(db, user)
    except HTTPException:
        await websocket.close(code=4401)
        return

    room = user_room(user_id)
    await websocket.accept()
    await hub.join(room, websocket)
    await websocket.send_json({"event": "unreadCount", "data": {"unreadCount": unread}})
    try:
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.leave(room, websocket)
        log.info("ws_disconnected", user_id=str(user_id))
