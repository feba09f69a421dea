"""
Notification inbox service.

Rows are added to the caller's session and committed together with the
mutation that produced them. Push delivery happens after commit.
"""
import uuid
from typing import Optional, List, Iterable

from sqlalchemy.orm import Session

from ..exceptions import AuthorizationError, NotFoundError, ValidationError
from ..models.enums import NotificationType, UserRole, values
from ..models.models import Notification, User


SENDER_ROLES = {"admin", "customer", "employee", "system"}


def create_notification(
    db: Session,
    *,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    order_id: Optional[uuid.UUID] = None,
    sender_role: str = "system",
    assigned_employee_id: Optional[uuid.UUID] = None,
    previous_assigned_employee_id: Optional[uuid.UUID] = None,
) -> Notification:
    if type not in values(NotificationType):
        raise ValidationError(f"Invalid notification type: {type}")
    if sender_role not in SENDER_ROLES:
        raise ValidationError(f"Invalid sender role: {sender_role}")
    notification = Notification(
        user_id=user_id,
        order_id=order_id,
        type=type,
        title=title,
        message=message,
        sender_role=sender_role,
        is_read=False,
        assigned_employee_id=assigned_employee_id,
        previous_assigned_employee_id=previous_assigned_employee_id,
    )
    db.add(notification)
    return notification


def get_admins(db: Session) -> List[User]:
    return (
        db.query(User)
        .filter(User.role == UserRole.ADMIN.value, User.is_active == True)  # noqa: E712
        .all()
    )


def notify_admins(
    db: Session,
    *,
    type: str,
    title: str,
    message: str,
    order_id: Optional[uuid.UUID] = None,
    sender_role: str = "system",
    exclude: Iterable[uuid.UUID] = (),
) -> List[Notification]:
    """One notification per active admin."""
    skip = set(exclude)
    created = []
    for admin in get_admins(db):
        if admin.id in skip:
            continue
        created.append(
            create_notification(
                db,
                user_id=admin.id,
                type=type,
                title=title,
                message=message,
                order_id=order_id,
                sender_role=sender_role,
            )
        )
    return created


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "userId": str(n.user_id),
        "orderId": str(n.order_id) if n.order_id else None,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "senderRole": n.sender_role,
        "isRead": bool(n.is_read),
        "assignedEmployeeId": str(n.assigned_employee_id) if n.assigned_employee_id else None,
        "previousAssignedEmployeeId": str(n.previous_assigned_employee_id) if n.previous_assigned_employee_id else None,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


def list_for_user(db: Session, user: User, *, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user: User) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .count()
    )


def mark_read(db: Session, user: User, notification_id: uuid.UUID) -> Notification:
    n = db.query(Notification).filter(Notification.id == notification_id).first()
    if not n:
        raise NotFoundError("Notification", notification_id)
    if n.user_id != user.id:
        raise AuthorizationError("Not authorized to update this notification")
    n.is_read = True
    db.commit()
    return n


def mark_all_read(db: Session, user: User) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return int(updated or 0)
