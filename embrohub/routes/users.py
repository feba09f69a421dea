from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..models.models import User
from ..schemas.auth import AdminUserUpdate, PasswordChange, ProfileUpdate, user_to_dict, session_user
from ..services import users as directory
from .common import ok


router = APIRouter(prefix="/users", tags=["users"])


@router.put("/profile")
def update_profile(body: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    user = directory.update_profile(db, user, body.model_dump(exclude_unset=True))
    return ok(message="Profile updated successfully", user=user_to_dict(user))


@router.put("/password")
def change_password(body: PasswordChange, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    directory.change_password(db, user, body.current_password, body.new_password)
    return ok(message="Password updated successfully")


@router.get("")
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    sort: str = "createdAt_desc",
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = directory.list_users(db, admin, q=q, role=role, sort=sort, page=page, limit=limit)
    result["users"] = [user_to_dict(u) for u in result["users"]]
    return ok(**result)


@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    return ok(user=user_to_dict(directory.get_user(db, user_id)))


@router.put("/{user_id}")
def update_user(
    user_id: str,
    body: AdminUserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = directory.admin_update_user(db, admin, user_id, body.model_dump(exclude_unset=True))
    return ok(user=user_to_dict(user))


@router.post("/{user_id}/impersonate")
def impersonate(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user, token = directory.impersonate(db, admin, user_id)
    return ok(message=f"Now viewing as {user.name}", token=token, user=session_user(user))
