"""
User directory: customer registration, login, profile edits, admin user
management and employee accounts.
"""
import secrets
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

import structlog
from slugify import slugify
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from ..models.enums import UserRole, OrderType, ActivityType, values
from ..models.models import User, Order, PendingWork, Notification, ActivityLog
from ..auth.security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_impersonation_token,
)
from . import emails
from .activity import record_activity
from .mailer import Mailer
from .numbering import next_customer_number


log = structlog.get_logger()

MIN_PASSWORD_LENGTH = 6
EMPLOYEE_ROLES = [OrderType.PATCHES.value, OrderType.VECTOR.value, OrderType.DIGITIZING.value]


def _norm(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if value is not None else None


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _taken(db: Session, column, value, exclude_id=None) -> bool:
    q = db.query(User.id).filter(column == value)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


def get_user(db: Session, user_id) -> User:
    try:
        uid = uuid.UUID(str(user_id))
    except (TypeError, ValueError):
        raise NotFoundError("User", user_id)
    user = db.get(User, uid)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def _require_admin(actor: User) -> None:
    if actor.role != UserRole.ADMIN.value:
        raise AuthorizationError()


def available_username(db: Session, base: str) -> str:
    candidate = slugify(base, separator="") or "user"
    name, i = candidate, 0
    while _taken(db, User.username, name):
        i += 1
        name = f"{candidate}{i}"
    return name


# ----------------------------------------------------------------------
# registration and sessions
# ----------------------------------------------------------------------

def register_customer(db: Session, data: Dict[str, Any]) -> Tuple[User, str]:
    required = ["name", "username", "email", "company", "country", "password", "street", "city", "state", "zip_code"]
    if any(not str(data.get(k) or "").strip() for k in required):
        raise ValidationError("Please fill all required fields")
    _check_password(data["password"])

    email = _norm(data["email"])
    username = _norm(data["username"])
    if _taken(db, User.email, email):
        raise ValidationError("Email already exists")
    if _taken(db, User.username, username):
        raise ValidationError("Username already exists")

    country = data["country"].strip()
    user = User(
        name=data["name"].strip(),
        username=username,
        email=email,
        password_hash=get_password_hash(data["password"]),
        role=UserRole.CUSTOMER.value,
        is_active=True,
        customer_number=next_customer_number(db, country),
        phone=data.get("phone") or None,
        company=data["company"].strip(),
        country=country,
        street=data["street"].strip(),
        city=data["city"].strip(),
        state=data["state"].strip(),
        zip_code=data["zip_code"].strip(),
    )
    db.add(user)
    db.commit()
    log.info("customer_registered", user_id=str(user.id), customer_number=user.customer_number)
    return user, create_access_token(str(user.id), user.role)


def login(
    db: Session,
    identifier: str,
    password: str,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[User, str]:
    if not identifier or not password:
        raise ValidationError("Please provide email/username and password")
    ident = _norm(identifier)
    user = db.query(User).filter(or_(User.email == ident, User.username == ident)).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthorizationError("Account is inactive")

    now = datetime.utcnow()
    user.last_login_at = now
    user.last_active_at = now
    record_activity(
        db,
        user_id=user.id,
        activity_type=ActivityType.LOGIN.value,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    log.info("user_login", user_id=str(user.id), role=user.role)
    return user, create_access_token(str(user.id), user.role)


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not current_password or not new_password:
        raise ValidationError("Please provide both passwords")
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    _check_password(new_password)
    user.password_hash = get_password_hash(new_password)
    db.commit()


# ----------------------------------------------------------------------
# profile and admin edits
# ----------------------------------------------------------------------

def _apply_identity(db: Session, user: User, changes: Dict[str, Any]) -> None:
    if changes.get("name") is not None:
        user.name = changes["name"].strip()
    if changes.get("email") is not None:
        email = _norm(changes["email"])
        if _taken(db, User.email, email, user.id):
            raise ValidationError("Email already exists")
        user.email = email
    if changes.get("username") is not None:
        username = _norm(changes["username"])
        if _taken(db, User.username, username, user.id):
            raise ValidationError("Username already exists")
        user.username = username
    if changes.get("invoicing_email") is not None:
        inv = _norm(changes["invoicing_email"])
        if _taken(db, User.invoicing_email, inv, user.id):
            raise ValidationError("Invoicing email already exists")
        user.invoicing_email = inv
    for field in ("phone", "company", "country"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])


def _apply_address(user: User, changes: Dict[str, Any]) -> None:
    for field in ("street", "city", "state", "zip_code"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])


def update_profile(db: Session, user: User, changes: Dict[str, Any]) -> User:
    _apply_identity(db, user, changes)
    if user.role == UserRole.CUSTOMER.value:
        _apply_address(user, changes)
    db.commit()
    return user


def list_users(
    db: Session,
    actor: User,
    *,
    q: Optional[str] = None,
    role: Optional[str] = None,
    sort: str = "createdAt_desc",
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    _require_admin(actor)
    query = db.query(User)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like), User.username.ilike(like)))
    if role:
        if role in values(OrderType):
            query = query.filter(User.role == UserRole.EMPLOYEE.value, User.employee_role == role)
        else:
            query = query.filter(User.role == role)
    order = User.created_at.asc() if sort == "createdAt_asc" else User.created_at.desc()

    page = max(1, page)
    limit = max(1, min(100, limit))
    total = query.count()
    users = query.order_by(order).offset((page - 1) * limit).limit(limit).all()
    return {
        "users": users,
        "total": total,
        "page": page,
        "pages": max(1, -(-total // limit)),
        "limit": limit,
    }


def admin_update_user(db: Session, actor: User, user_id, changes: Dict[str, Any]) -> User:
    _require_admin(actor)
    user = get_user(db, user_id)
    _apply_identity(db, user, changes)
    _apply_address(user, changes)

    if changes.get("role") is not None:
        user.role = changes["role"]
    if changes.get("employee_role") is not None:
        user.employee_role = changes["employee_role"]
    if user.role == UserRole.EMPLOYEE.value and not user.employee_role:
        raise ValidationError("employeeRole is required for employees")
    if user.role != UserRole.EMPLOYEE.value:
        user.employee_role = None
    if changes.get("admin_notes") is not None:
        user.admin_notes = changes["admin_notes"]
    if changes.get("is_active") is not None:
        user.is_active = changes["is_active"]

    if (
        changes.get("assign_customer_number")
        and user.role == UserRole.CUSTOMER.value
        and not user.customer_number
    ):
        if not user.country:
            raise ValidationError("Country is required to assign a customer number")
        user.customer_number = next_customer_number(db, user.country)
    db.commit()
    return user


def impersonate(db: Session, actor: User, user_id) -> Tuple[User, str]:
    _require_admin(actor)
    user = get_user(db, user_id)
    if user.role != UserRole.CUSTOMER.value:
        raise ValidationError("Can only impersonate customers")
    if not user.is_active:
        raise ValidationError("Cannot impersonate inactive user")
    log.info("admin_impersonation", admin_id=str(actor.id), user_id=str(user.id))
    return user, create_impersonation_token(str(user.id), str(actor.id))


# ----------------------------------------------------------------------
# employees
# ----------------------------------------------------------------------

def _check_employee_role(role: Optional[str]) -> None:
    if role not in EMPLOYEE_ROLES:
        raise ValidationError(f"Invalid employeeRole. Allowed: {', '.join(EMPLOYEE_ROLES)}")


def get_employee(db: Session, employee_id) -> User:
    try:
        employee = get_user(db, employee_id)
    except NotFoundError:
        raise NotFoundError("Employee", employee_id)
    if employee.role != UserRole.EMPLOYEE.value:
        raise NotFoundError("Employee", employee_id)
    return employee


def create_employee(db: Session, mailer: Mailer, actor: User, data: Dict[str, Any]) -> User:
    _require_admin(actor)
    name = (data.get("name") or "").strip()
    email = _norm(data.get("email"))
    if not name or not email:
        raise ValidationError("Name and Email are required")
    _check_employee_role(data.get("employee_role"))
    if _taken(db, User.email, email):
        raise ValidationError("User with this email already exists")

    temp_password = secrets.token_hex(8)
    employee = User(
        name=name,
        username=available_username(db, email.split("@", 1)[0]),
        email=email,
        password_hash=get_password_hash(temp_password),
        role=UserRole.EMPLOYEE.value,
        employee_role=data["employee_role"],
        is_active=True,
    )
    db.add(employee)
    db.commit()
    log.info("employee_created", employee_id=str(employee.id), employee_role=employee.employee_role)

    subject, html = emails.employee_welcome(employee, temp_password)
    try:
        if not mailer.send(employee.email, subject, html):
            log.warning("email_not_sent", recipient=employee.email, subject=subject)
    except Exception as e:
        log.warning("email_failed", recipient=employee.email, subject=subject, error=str(e))
    return employee


def list_employees(db: Session, actor: User) -> List[User]:
    _require_admin(actor)
    return (
        db.query(User)
        .filter(User.role == UserRole.EMPLOYEE.value)
        .order_by(User.created_at.desc())
        .all()
    )


def update_employee(db: Session, actor: User, employee_id, changes: Dict[str, Any]) -> User:
    _require_admin(actor)
    employee = get_employee(db, employee_id)
    if changes.get("name"):
        employee.name = changes["name"].strip()
    if changes.get("email"):
        email = _norm(changes["email"])
        if email != employee.email:
            if _taken(db, User.email, email, employee.id):
                raise ValidationError("Email already in use")
            employee.email = email
    if changes.get("employee_role"):
        _check_employee_role(changes["employee_role"])
        employee.employee_role = changes["employee_role"]
    if isinstance(changes.get("is_active"), bool):
        employee.is_active = changes["is_active"]
    db.commit()
    return employee


def delete_employee(db: Session, actor: User, employee_id) -> int:
    """Remove the account; every order assigned to it becomes unassigned. Returns the detached count."""
    _require_admin(actor)
    employee = get_employee(db, employee_id)
    detached = (
        db.query(Order)
        .filter(Order.assigned_to_id == employee.id)
        .update({Order.assigned_to_id: None}, synchronize_session="fetch")
    )
    db.query(PendingWork).filter(PendingWork.submitted_by_id == employee.id).update(
        {PendingWork.submitted_by_id: None}, synchronize_session="fetch"
    )
    db.query(Notification).filter(Notification.assigned_employee_id == employee.id).update(
        {Notification.assigned_employee_id: None}, synchronize_session="fetch"
    )
    db.query(Notification).filter(Notification.previous_assigned_employee_id == employee.id).update(
        {Notification.previous_assigned_employee_id: None}, synchronize_session="fetch"
    )
    db.query(Notification).filter(Notification.user_id == employee.id).delete(synchronize_session="fetch")
    db.query(ActivityLog).filter(ActivityLog.user_id == employee.id).delete(synchronize_session="fetch")
    db.delete(employee)
    db.commit()
    log.info("employee_deleted", employee_id=str(employee_id), detached_orders=detached)
    return detached
