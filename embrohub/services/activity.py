"""
Activity logging service.
Append-only trail of what users do (logins, order updates, report submissions).
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from ..exceptions import ValidationError
from ..models.enums import ActivityType, UserRole, values
from ..models.models import ActivityLog, User


ONLINE_WINDOW = timedelta(minutes=5)


def record_activity(
    db: Session,
    *,
    user_id,
    activity_type: str,
    order_id=None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    session_duration: Optional[float] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    """
    Add an activity entry to the session. The caller commits.

    Args:
        db: Database session
        user_id: Acting user
        activity_type: One of ActivityType values
        order_id: Related order, if any
        session_duration: Minutes, only meaningful for logout
        details: Free-form context

    Returns:
        The pending ActivityLog row
    """
    if activity_type not in values(ActivityType):
        raise ValidationError(f"Invalid activityType: {activity_type}")
    entry = ActivityLog(
        user_id=user_id,
        activity_type=activity_type,
        timestamp=datetime.utcnow(),
        order_id=order_id,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        session_duration=session_duration,
        details=details or None,
    )
    db.add(entry)
    return entry


def touch_user(db: Session, user: User) -> None:
    user.last_active_at = datetime.utcnow()


def activity_to_dict(a: ActivityLog) -> dict:
    return {
        "id": str(a.id),
        "userId": str(a.user_id),
        "activityType": a.activity_type,
        "timestamp": a.timestamp.isoformat() if a.timestamp else None,
        "orderId": str(a.order_id) if a.order_id else None,
        "ipAddress": a.ip_address,
        "userAgent": a.user_agent,
        "sessionDuration": a.session_duration,
        "details": a.details,
    }


def logs_for_user(db: Session, user_id, limit: int = 100) -> List[ActivityLog]:
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.user_id == user_id)
        .order_by(ActivityLog.timestamp.desc())
        .limit(limit)
        .all()
    )


def employee_summary(db: Session) -> List[dict]:
    """Online state and last activity per employee."""
    now = datetime.utcnow()
    employees = db.query(User).filter(User.role == UserRole.EMPLOYEE.value).order_by(User.name.asc()).all()
    out = []
    for emp in employees:
        last = (
            db.query(ActivityLog)
            .filter(ActivityLog.user_id == emp.id)
            .order_by(ActivityLog.timestamp.desc())
            .first()
        )
        last_active = emp.last_active_at.replace(tzinfo=None) if emp.last_active_at else None
        out.append({
            "id": str(emp.id),
            "name": emp.name,
            "email": emp.email,
            "isOnline": bool(last_active and now - last_active < ONLINE_WINDOW),
            "lastActiveAt": emp.last_active_at.isoformat() if emp.last_active_at else None,
            "lastActivity": last.activity_type if last else "None",
        })
    return out
