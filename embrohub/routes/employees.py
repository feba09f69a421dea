from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_admin
from ..db import get_db
from ..models.models import User
from ..schemas.auth import EmployeeCreate, EmployeeUpdate, user_to_dict
from ..services import users as directory
from ..services.mailer import Mailer, get_mailer
from .common import ok


router = APIRouter(prefix="/employees", tags=["employees"])


@router.post("", status_code=201)
def create_employee(
    body: EmployeeCreate,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    admin: User = Depends(require_admin),
):
    employee = directory.create_employee(db, mailer, admin, body.model_dump())
    return ok(employee=user_to_dict(employee))


@router.get("")
def list_employees(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    employees = directory.list_employees(db, admin)
    return ok(count=len(employees), employees=[user_to_dict(e) for e in employees])


@router.put("/{employee_id}")
def update_employee(
    employee_id: str,
    body: EmployeeUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    employee = directory.update_employee(db, admin, employee_id, body.model_dump(exclude_unset=True))
    return ok(message="Employee updated successfully", employee=user_to_dict(employee))


@router.delete("/{employee_id}")
def delete_employee(employee_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    detached = directory.delete_employee(db, admin, employee_id)
    return ok(message="Employee deleted successfully", detachedOrders=detached)
