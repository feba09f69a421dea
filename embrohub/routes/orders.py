from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..auth.security import get_current_user
from ..db import get_db
from ..exceptions import ValidationError
from ..models.enums import SampleType, UserRole
from ..models.models import User
from ..schemas.orders import (
    OrderCreate,
    OrderUpdate,
    AssignRequest,
    BulkAssignRequest,
    CommentsRequest,
    SampleUpload,
    EmployeeSubmit,
    RejectWorkRequest,
    order_to_dict,
    sample_image_to_dict,
)
from ..services import order_queries
from ..services.mailer import Mailer, get_mailer
from ..services.order_lifecycle import OrderLifecycle
from ..services.push_hub import PushChannel, get_push
from ..storage.provider import StorageProvider
from .common import ok, parse_model, read_body
from .files import get_storage


router = APIRouter(prefix="/orders", tags=["orders"])


def get_lifecycle(
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    push: PushChannel = Depends(get_push),
    storage: StorageProvider = Depends(get_storage),
) -> OrderLifecycle:
    return OrderLifecycle(db, mailer, push, storage)


def _render(order, user: User) -> dict:
    for_assignee = user.role == UserRole.EMPLOYEE.value and order.assigned_to_id == user.id
    return order_to_dict(order, user, for_assignee=for_assignee)


# ----------------------------------------------------------------------
# reads
# ----------------------------------------------------------------------

@router.get("")
def list_orders(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    orders = order_queries.list_orders(db, user)
    return ok(count=len(orders), orders=[order_to_dict(o, user) for o in orders])


@router.get("/stats")
def order_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(stats=order_queries.order_stats(db, user))


@router.get("/assigned")
def assigned_orders(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    orders = order_queries.assigned_orders(db, user)
    return ok(count=len(orders), orders=[order_to_dict(o, user, for_assignee=True) for o in orders])


@router.get("/invoices")
def my_order_invoices(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(orders=order_queries.customer_invoice_summary(db, user))


@router.get("/customer-aggregate")
def customer_aggregate(
    customer_id: Optional[str] = Query(None, alias="customerId"),
    customer_email: Optional[str] = Query(None, alias="customerEmail"),
    customer_name: Optional[str] = Query(None, alias="customerName"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = order_queries.customer_aggregate(
        db, user, customer_id=customer_id, customer_email=customer_email, customer_name=customer_name
    )
    for row in rows:
        row["orders"] = [order_to_dict(o, user) for o in row["orders"]]
    return ok(customers=rows)


@router.get("/employee-analytics")
def employee_analytics(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ok(**order_queries.employee_analytics(db, user, start_date=start_date, end_date=end_date))


@router.get("/pending-employee-work")
def pending_employee_work(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    orders = order_queries.pending_work_queue(db, user)
    return ok(count=len(orders), orders=[order_to_dict(o, user) for o in orders])


@router.get("/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    order = order_queries.get_visible_order(db, user, order_id)
    return ok(order=_render(order, user))


# ----------------------------------------------------------------------
# lifecycle
# ----------------------------------------------------------------------

@router.post("", status_code=201)
async def create_order(
    request: Request,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """JSON with pre-uploaded file descriptors, or multipart with the files attached."""
    data, uploads = await read_body(request)
    payload = parse_model(OrderCreate, data)
    order = await run_in_threadpool(lifecycle.create_order, user, payload.model_dump(), uploads)
    return ok(message="Order created successfully", order=order_to_dict(order, user))


@router.patch("/assign/{order_id}")
def assign_order(
    order_id: str,
    body: AssignRequest,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    if not body.employee_id:
        raise ValidationError("employeeId is required")
    order, previous_id = lifecycle.assign(user, order_id, body.employee_id)
    return ok(
        message="Order assigned successfully",
        order=order_to_dict(order, user),
        previousAssigned=str(previous_id) if previous_id else None,
    )


@router.patch("/bulk-assign")
def bulk_assign(
    body: BulkAssignRequest,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = lifecycle.bulk_assign(user, body.order_ids, body.employee_id)
    return ok(
        message=f"{result['assignedCount']} order(s) assigned successfully",
        assignedCount=result["assignedCount"],
        failed=result["failed"],
        orders=[order_to_dict(o, user) for o in result["orders"]],
    )


@router.patch("/{order_id}/approve")
def approve_order(order_id: str, user: User = Depends(get_current_user), lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    order = lifecycle.approve(user, order_id)
    return ok(message="Order approved", order=order_to_dict(order, user))


@router.patch("/{order_id}/revision-request")
def request_revision(
    order_id: str,
    body: Optional[CommentsRequest] = None,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = lifecycle.request_revision(user, order_id, body.comments if body else None)
    return ok(message="Revision requested", order=order_to_dict(order, user))


@router.patch("/{order_id}/revision-approve")
def approve_revision(order_id: str, user: User = Depends(get_current_user), lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    order = lifecycle.approve_revision(user, order_id)
    return ok(message="Revision approved", order=order_to_dict(order, user))


@router.put("/{order_id}")
def update_order(
    order_id: str,
    body: OrderUpdate,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = lifecycle.update_order(user, order_id, body.model_dump(exclude_unset=True))
    return ok(message="Order updated successfully", order=_render(order, user))


@router.post("/{order_id}/email")
async def email_customer(
    order_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    data, uploads = await read_body(request)
    await run_in_threadpool(lifecycle.send_custom_email, user, order_id, data.get("message"), uploads)
    return ok(message="Email sent successfully")


@router.delete("/{order_id}")
def delete_order(order_id: str, user: User = Depends(get_current_user), lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    lifecycle.delete_order(user, order_id)
    return ok(message="Order deleted successfully")


async def _upload_sample(kind: str, order_id: str, request: Request, user: User, lifecycle: OrderLifecycle) -> dict:
    data, uploads = await read_body(request)
    payload = parse_model(SampleUpload, data)
    files = [f.model_dump() for f in payload.files] if payload.files else None
    order, image = await run_in_threadpool(
        lambda: lifecycle.upload_sample(
            user,
            order_id,
            kind=kind,
            files=files,
            cloudinary_url=payload.cloudinary_url,
            filename=payload.filename,
            comments=payload.comments,
            upload=uploads[0] if uploads else None,
        )
    )
    noun = "Sample" if kind == SampleType.INITIAL.value else "Revision"
    return ok(message=f"{noun} uploaded successfully", order=order_to_dict(order, user), image=sample_image_to_dict(image))


@router.post("/{order_id}/sample")
async def upload_sample(
    order_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await _upload_sample(SampleType.INITIAL.value, order_id, request, user, lifecycle)


@router.post("/{order_id}/revision")
async def upload_revision(
    order_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await _upload_sample(SampleType.REVISION.value, order_id, request, user, lifecycle)


@router.post("/{order_id}/create-revision", status_code=201)
def create_revision(
    order_id: str,
    body: Optional[CommentsRequest] = None,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    revision = lifecycle.create_revision(user, order_id, body.comments if body else None)
    return ok(message="Revision order created successfully", order=order_to_dict(revision, user))


@router.post("/{order_id}/employee-submit")
def employee_submit(
    order_id: str,
    body: EmployeeSubmit,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = lifecycle.submit_work(
        user,
        order_id,
        pending_status=body.pending_status,
        pending_files=[f.model_dump(by_alias=True) for f in body.pending_files],
        pending_report=body.pending_report,
        comments=body.comments,
    )
    return ok(message="Work submitted for admin review", order=_render(order, user))


@router.post("/{order_id}/admin-approve-work")
def admin_approve_work(order_id: str, user: User = Depends(get_current_user), lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    order = lifecycle.approve_work(user, order_id)
    return ok(message="Work approved and sent to customer", order=order_to_dict(order, user))


@router.post("/{order_id}/admin-reject-work")
def admin_reject_work(
    order_id: str,
    body: Optional[RejectWorkRequest] = None,
    user: User = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = lifecycle.reject_work(user, order_id, body.rejection_reason if body else None)
    return ok(message="Work rejected", order=order_to_dict(order, user))
