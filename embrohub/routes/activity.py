import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..exceptions import NotFoundError
from ..models.models import User
from ..schemas.auth import ActivityCreate
from ..services import activity
from .common import ok


router = APIRouter(prefix="/activity", tags=["activity"])


@router.post("/log")
def log_activity(
    body: ActivityCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order_id = None
    if body.order_id:
        try:
            order_id = uuid.UUID(body.order_id)
        except ValueError:
            order_id = None
    activity.record_activity(
        db,
        user_id=user.id,
        activity_type=body.activity_type,
        order_id=order_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_duration=body.session_duration,
        details=body.metadata,
    )
    activity.touch_user(db, user)
    db.commit()
    return ok()


@router.get("/employee/{employee_id}")
def employee_logs(employee_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    try:
        uid = uuid.UUID(employee_id)
    except ValueError:
        raise NotFoundError("Employee", employee_id)
    return ok(logs=[activity.activity_to_dict(a) for a in activity.logs_for_user(db, uid)])


@router.get("/summary")
def activity_summary(db: Session = Depends(get_db), _: User = Depends(require_admin)):
    return ok(summary=activity.employee_summary(db))
