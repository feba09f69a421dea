from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.enums import ActivityType
from ..models.models import User
from ..schemas.auth import RegisterRequest, LoginRequest, user_to_dict, session_user
from ..services import users as directory
from ..services.activity import record_activity
from .security import get_current_user


router = APIRouter(prefix="/auth", tags=["auth"])


def _client(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    user, token = directory.register_customer(db, payload.model_dump())
    return {
        "success": True,
        "message": "Registration successful!",
        "token": token,
        "user": session_user(user),
    }


@router.post("/login")
def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user, token = directory.login(db, req.identifier, req.password, **_client(request))
    return {
        "success": True,
        "message": "Login successful",
        "token": token,
        "user": session_user(user),
    }


@router.post("/logout")
def logout(
    request: Request,
    session_minutes: Optional[float] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    record_activity(
        db,
        user_id=user.id,
        activity_type=ActivityType.LOGOUT.value,
        session_duration=session_minutes,
        **_client(request),
    )
    db.commit()
    return {"success": True, "message": "Logged out"}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": user_to_dict(user)}
