from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends

from ..auth.security import get_current_user
from ..exceptions import EmbroHubError
from ..models.models import User
from ..schemas.invoices import PaymentCreate, PaymentCapture, invoice_to_dict
from ..services.invoices import InvoiceService
from .common import ok
from .invoices import get_invoice_service


router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
log = structlog.get_logger()


@router.post("/create-order")
def create_payment_order(
    body: PaymentCreate,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return ok(**service.create_payment(user, body.invoice_id))


@router.post("/capture-order")
def capture_payment_order(
    body: PaymentCapture,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = service.capture_payment(user, body.invoice_id, body.paypal_order_id)
    return ok(message="Payment captured successfully", invoice=invoice_to_dict(invoice))


@router.get("/status/{invoice_id}")
def payment_status(invoice_id: str, user: User = Depends(get_current_user), service: InvoiceService = Depends(get_invoice_service)):
    return ok(**service.payment_status(user, invoice_id))


@webhook_router.post("/paypal")
def paypal_webhook(event: Dict[str, Any], service: InvoiceService = Depends(get_invoice_service)):
    """Always acknowledged so PayPal stops retrying; failures are logged."""
    log.info("paypal_webhook_received", event_type=event.get("event_type"))
    try:
        invoice = service.handle_webhook(event)
    except EmbroHubError as e:
        log.warning("paypal_webhook_rejected", event_type=event.get("event_type"), error=e.message)
        return ok(received=True, processed=False)
    return ok(received=True, processed=invoice is not None)
