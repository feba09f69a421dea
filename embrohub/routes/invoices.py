from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.invoices import (
    InvoiceCreate,
    InvoiceUpdate,
    PaymentVerify,
    invoice_to_dict,
    public_invoice_to_dict,
)
from ..services.invoices import InvoiceService
from ..services.mailer import Mailer, get_mailer
from ..services.paypal import PayPalGateway, get_payment_gateway
from ..services.push_hub import PushChannel, get_push
from .common import ok


router = APIRouter(prefix="/invoices", tags=["invoices"])


def get_invoice_service(
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    push: PushChannel = Depends(get_push),
    gateway: PayPalGateway = Depends(get_payment_gateway),
) -> InvoiceService:
    return InvoiceService(db, mailer, push, gateway)


# ----------------------------------------------------------------------
# public (payment links)
# ----------------------------------------------------------------------

@router.get("/public/{invoice_id}")
def public_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return ok(invoice=public_invoice_to_dict(service.get_invoice(invoice_id)))


@router.post("/public/pay/{invoice_id}")
def public_pay(invoice_id: str, body: PaymentVerify, service: InvoiceService = Depends(get_invoice_service)):
    invoice = service.verify_payment(None, invoice_id, body.transaction_id)
    return ok(message="Payment successful and verified", invoice=public_invoice_to_dict(invoice))


# ----------------------------------------------------------------------
# authenticated
# ----------------------------------------------------------------------

@router.get("/my")
def my_invoices(user: User = Depends(get_current_user), service: InvoiceService = Depends(get_invoice_service)):
    invoices = service.list_invoices(user)
    return ok(invoices=[invoice_to_dict(i) for i in invoices])


@router.get("")
def list_invoices(
    status: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoices = service.list_invoices(user, status=status, start_date=start_date, end_date=end_date)
    return ok(count=len(invoices), invoices=[invoice_to_dict(i) for i in invoices])


@router.post("", status_code=201)
def create_invoice(
    body: InvoiceCreate,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    order_ids = list(body.order_ids)
    if body.order_id:
        order_ids.append(body.order_id)
    invoice = service.create(
        user,
        order_ids,
        items=[i.model_dump() for i in body.items] if body.items is not None else None,
        tax=body.tax,
        notes=body.notes,
        due_date=body.due_date,
        currency=body.currency,
        country=body.country,
    )
    return ok(message="Invoice created successfully", invoice=invoice_to_dict(invoice))


@router.get("/{invoice_id}")
def get_invoice(invoice_id: str, user: User = Depends(get_current_user), service: InvoiceService = Depends(get_invoice_service)):
    return ok(invoice=invoice_to_dict(service.get_for(user, invoice_id)))


@router.put("/{invoice_id}")
def update_invoice(
    invoice_id: str,
    body: InvoiceUpdate,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    changes = body.model_dump(exclude_unset=True)
    if body.items is not None:
        changes["items"] = [i.model_dump() for i in body.items]
    invoice = service.update(user, invoice_id, changes)
    return ok(message="Invoice updated successfully", invoice=invoice_to_dict(invoice))


@router.post("/{invoice_id}/cancel")
def cancel_invoice(invoice_id: str, user: User = Depends(get_current_user), service: InvoiceService = Depends(get_invoice_service)):
    invoice = service.cancel(user, invoice_id)
    return ok(message="Invoice cancelled", invoice=invoice_to_dict(invoice))


@router.post("/{invoice_id}/send")
def send_invoice(invoice_id: str, user: User = Depends(get_current_user), service: InvoiceService = Depends(get_invoice_service)):
    invoice = service.resend(user, invoice_id)
    return ok(message="Invoice email sent successfully", invoice=invoice_to_dict(invoice))


@router.post("/{invoice_id}/verify")
def verify_invoice_payment(
    invoice_id: str,
    body: PaymentVerify,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = service.verify_payment(user, invoice_id, body.transaction_id)
    return ok(message="Payment successful and verified", invoice=invoice_to_dict(invoice))
