"""Read-side queries over orders: listings, stats and admin analytics."""
import uuid
from collections import Counter
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..exceptions import AuthorizationError, NotFoundError, ValidationError
from ..models.enums import UserRole, OrderStatus, OrderType, PaymentStatus, PendingWorkState
from ..models.models import Order, User, PendingWork, Invoice


def _base_query(db: Session):
    return db.query(Order).options(
        selectinload(Order.sample_images),
        selectinload(Order.pending_work),
    )


def list_orders(db: Session, actor: User) -> List[Order]:
    q = _base_query(db)
    if actor.role != UserRole.ADMIN.value:
        q = q.filter(Order.customer_id == actor.id)
    return q.order_by(Order.created_at.desc()).all()


def assigned_orders(db: Session, actor: User) -> List[Order]:
    if actor.role != UserRole.EMPLOYEE.value:
        raise AuthorizationError("Only employees can access assigned orders")
    return (
        _base_query(db)
        .filter(Order.assigned_to_id == actor.id)
        .order_by(Order.created_at.desc())
        .all()
    )


def get_visible_order(db: Session, actor: User, order_id) -> Order:
    """Admins see every order, customers their own, employees the ones assigned to them."""
    try:
        oid = uuid.UUID(str(order_id))
    except (TypeError, ValueError):
        raise NotFoundError("Order", order_id)
    order = db.get(Order, oid)
    if not order:
        raise NotFoundError("Order", order_id)
    if actor.role == UserRole.ADMIN.value:
        return order
    if order.customer_id == actor.id or order.assigned_to_id == actor.id:
        return order
    raise AuthorizationError()


def order_stats(db: Session, actor: User) -> Dict[str, int]:
    if actor.role not in (UserRole.ADMIN.value, UserRole.EMPLOYEE.value):
        raise AuthorizationError()
    by_status = dict(db.query(Order.status, func.count(Order.id)).group_by(Order.status).all())
    by_type = dict(db.query(Order.order_type, func.count(Order.id)).group_by(Order.order_type).all())
    return {
        "inProgress": by_status.get(OrderStatus.IN_PROGRESS.value, 0),
        "waitingForApproval": by_status.get(OrderStatus.WAITING_FOR_APPROVAL.value, 0),
        "completed": by_status.get(OrderStatus.COMPLETED.value, 0),
        "rejected": by_status.get(OrderStatus.REJECTED.value, 0),
        "cancelled": by_status.get(OrderStatus.CANCELLED.value, 0),
        "vector": by_type.get(OrderType.VECTOR.value, 0),
        "digitizing": by_type.get(OrderType.DIGITIZING.value, 0),
        "patches": by_type.get(OrderType.PATCHES.value, 0),
        "byStatus": by_status,
        "total": sum(by_status.values()),
    }


def pending_work_queue(db: Session, actor: User) -> List[Order]:
    if actor.role != UserRole.ADMIN.value:
        raise AuthorizationError("Only admin can view pending work")
    return (
        _base_query(db)
        .join(PendingWork, PendingWork.order_id == Order.id)
        .filter(PendingWork.state == PendingWorkState.PENDING.value)
        .order_by(PendingWork.submitted_at.desc())
        .all()
    )


def _order_quantity(order: Order) -> int:
    if order.order_type == OrderType.PATCHES.value:
        return int(order.patch_quantity or 0)
    return sum(int(i.get("quantity") or 0) for i in order.items or [])


def customer_aggregate(
    db: Session,
    actor: User,
    *,
    customer_id: Optional[str] = None,
    customer_email: Optional[str] = None,
    customer_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Per-customer totals: orders, quantity, amount paid and counts by status."""
    if actor.role != UserRole.ADMIN.value:
        raise AuthorizationError("Only admin can access customer aggregates")
    if not (customer_id or customer_email or customer_name):
        raise ValidationError("Provide customerId, customerEmail, or customerName")

    q = db.query(User).filter(User.role == UserRole.CUSTOMER.value)
    if customer_id:
        try:
            q = q.filter(User.id == uuid.UUID(str(customer_id)))
        except ValueError:
            return []
    elif customer_email:
        q = q.filter(User.email.ilike(f"%{customer_email}%"))
    else:
        q = q.filter(User.name.ilike(f"%{customer_name}%"))

    out = []
    for customer in q.all():
        orders = (
            db.query(Order)
            .filter(Order.customer_id == customer.id)
            .order_by(Order.created_at.desc())
            .all()
        )
        paid_invoices = {}
        for o in orders:
            inv = o.invoice
            if inv is not None and inv.payment_status == PaymentStatus.PAID.value:
                paid_invoices[inv.id] = inv.total or 0
        out.append({
            "customer": {"id": str(customer.id), "name": customer.name, "email": customer.email},
            "totalOrders": len(orders),
            "totalQuantity": sum(_order_quantity(o) for o in orders),
            "totalPaid": round(sum(paid_invoices.values()), 2),
            "ordersByStatus": dict(Counter(o.status for o in orders)),
            "orders": orders,
        })
    return out


def employee_analytics(
    db: Session,
    actor: User,
    *,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Workload and average completion time per employee over an optional date range."""
    if actor.role != UserRole.ADMIN.value:
        raise AuthorizationError("Only admin can access employee analytics")
    q = db.query(Order)
    if start_date:
        q = q.filter(Order.created_at >= start_date)
    if end_date:
        q = q.filter(Order.created_at <= end_date)
    orders = q.order_by(Order.created_at.desc()).all()

    employees = db.query(User).filter(User.role == UserRole.EMPLOYEE.value).order_by(User.name.asc()).all()
    analytics = []
    for emp in employees:
        mine = [o for o in orders if o.assigned_to_id == emp.id]
        completed = [o for o in mine if o.status == OrderStatus.COMPLETED.value]
        avg_days = 0.0
        if completed:
            spans = [
                ((o.updated_at or o.created_at) - o.created_at).total_seconds() / 86400.0
                for o in completed
            ]
            avg_days = round(sum(spans) / len(spans), 2)
        analytics.append({
            "employee": {"id": str(emp.id), "name": emp.name, "email": emp.email, "role": emp.employee_role},
            "totalAssigned": len(mine),
            "inProgress": sum(1 for o in mine if o.status == OrderStatus.IN_PROGRESS.value),
            "completed": len(completed),
            "rejected": sum(1 for o in mine if o.status == OrderStatus.REJECTED.value),
            "avgCompletionTimeDays": avg_days,
            "recentCompleted": [
                {
                    "id": str(o.id),
                    "orderNumber": o.order_number,
                    "orderType": o.order_type,
                    "designName": o.design_name or o.patch_design_name or "-",
                    "customerName": o.customer.name if o.customer else "-",
                    "completedAt": o.updated_at.isoformat() if o.updated_at else None,
                }
                for o in completed[:10]
            ],
        })
    return {
        "analytics": analytics,
        "unassignedCount": sum(1 for o in orders if o.assigned_to_id is None),
        "totalOrders": len(orders),
    }


def customer_invoice_summary(db: Session, actor: User) -> List[Dict[str, Any]]:
    """The caller's orders with the invoice each one is billed on."""
    orders = (
        db.query(Order)
        .filter(Order.customer_id == actor.id)
        .order_by(Order.created_at.desc())
        .all()
    )
    out = []
    for o in orders:
        inv: Optional[Invoice] = o.invoice
        out.append({
            "orderId": str(o.id),
            "orderNumber": o.order_number,
            "orderType": o.order_type,
            "status": o.status,
            "totalAmount": o.total_amount or 0,
            "invoice": {
                "id": str(inv.id),
                "invoiceNumber": inv.invoice_number,
                "subtotal": inv.subtotal,
                "tax": inv.tax,
                "total": inv.total,
                "status": inv.payment_status,
            } if inv else None,
            "createdAt": o.created_at.isoformat() if o.created_at else None,
            "updatedAt": o.updated_at.isoformat() if o.updated_at else None,
        })
    return out
