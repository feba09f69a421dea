"""
Consolidated invoices and PayPal settlement.

An invoice bills one or more orders of a single customer. It is marked paid
only after the provider confirms a completed payment for the exact amount and
currency.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..exceptions import ValidationError, AuthorizationError, NotFoundError, ExternalServiceError
from ..models.enums import UserRole, PaymentStatus, OrderInvoiceStatus, NotificationType
from ..models.models import Invoice, Order, User
from ..schemas.invoices import invoice_to_dict
from . import emails
from .countries import get_country_code
from .mailer import Mailer
from .notifications import create_notification, notify_admins, notification_to_dict, get_admins
from .numbering import new_invoice_number
from .paypal import PayPalGateway
from .push_hub import PushChannel, user_room


log = structlog.get_logger()

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "CHF": "CHF", "CAD": "C$", "AUD": "A$"}
DEFAULT_CURRENCY = {"US": "USD", "GB": "GBP", "CH": "CHF"}
AMOUNT_TOLERANCE = 0.01


def items_subtotal(items: List[dict]) -> float:
    return round(sum(float(i.get("price") or 0) * int(i.get("quantity") or 0) for i in items), 2)


class InvoiceService:
    def __init__(self, db: Session, mailer: Mailer, push: PushChannel, gateway: Optional[PayPalGateway] = None):
        self.db = db
        self.mailer = mailer
        self.push = push
        self.gateway = gateway

    def get_invoice(self, invoice_id) -> Invoice:
        try:
            inv_uuid = uuid.UUID(str(invoice_id))
        except (TypeError, ValueError):
            raise NotFoundError("Invoice", invoice_id)
        invoice = self.db.get(Invoice, inv_uuid)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    @staticmethod
    def _require_admin(actor: User) -> None:
        if actor.role != UserRole.ADMIN.value:
            raise AuthorizationError("Forbidden")

    @staticmethod
    def _require_payer(invoice: Invoice, actor: User) -> None:
        if actor.role != UserRole.CUSTOMER.value or invoice.customer_id != actor.id:
            raise AuthorizationError("You do not have permission to pay this invoice")

    def _emit(self, user_id, event: str, payload: Any) -> None:
        try:
            self.push.emit(user_room(user_id), event, payload)
        except Exception as e:
            log.warning("push_failed", user_id=str(user_id), push_event=event, error=str(e))

    def _send_invoice_email(self, invoice: Invoice) -> bool:
        customer = invoice.customer
        recipient = customer.invoicing_email or customer.email
        subject, html = emails.invoice(customer, invoice)
        try:
            sent = self.mailer.send(recipient, subject, html)
        except Exception as e:
            log.warning("invoice_email_failed", invoice_id=str(invoice.id), error=str(e))
            return False
        if sent:
            invoice.invoice_sent = True
            self.db.commit()
        return sent

    # ------------------------------------------------------------------
    # admin operations
    # ------------------------------------------------------------------

    def create(
        self,
        actor: User,
        order_ids: List[str],
        *,
        items: Optional[List[dict]] = None,
        tax: float = 0,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        currency: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Invoice:
        self._require_admin(actor)
        if not order_ids:
            raise ValidationError("At least one orderId is required")
        if tax is not None and tax < 0:
            raise ValidationError("tax cannot be negative")

        orders: List[Order] = []
        for raw_id in dict.fromkeys(str(i) for i in order_ids):
            try:
                order = self.db.get(Order, uuid.UUID(raw_id))
            except ValueError:
                order = None
            if not order:
                raise NotFoundError("Order", raw_id)
            orders.append(order)
        customer_ids = {o.customer_id for o in orders}
        if len(customer_ids) != 1:
            raise ValidationError("All orders on an invoice must belong to the same customer")
        for o in orders:
            if o.has_invoice and o.invoice_status != OrderInvoiceStatus.CANCELLED.value:
                raise ValidationError(f"Order {o.order_number} is already invoiced")

        customer = orders[0].customer
        lines = [dict(i) for i in items] if items else [dict(i) for o in orders for i in (o.items or [])]
        if not lines:
            raise ValidationError("Invoice needs at least one item")
        subtotal = items_subtotal(lines)
        inv_country = country or customer.country or "USA"
        inv_currency = (currency or DEFAULT_CURRENCY.get(get_country_code(inv_country), "EUR")).upper()

        invoice = Invoice(
            invoice_number=new_invoice_number(),
            customer_id=customer.id,
            items=lines,
            subtotal=subtotal,
            tax=round(tax or 0, 2),
            total=round(subtotal + (tax or 0), 2),
            country=inv_country,
            currency=inv_currency,
            currency_symbol=CURRENCY_SYMBOLS.get(inv_currency, inv_currency),
            payment_status=PaymentStatus.UNPAID.value,
            generated_by_admin=True,
            notes=notes or "",
            due_date=due_date,
            order_total=round(sum(o.total_amount or 0 for o in orders), 2),
        )
        invoice.orders = orders
        self.db.add(invoice)
        self.db.flush()
        for o in orders:
            o.invoice_id = invoice.id
            o.has_invoice = True
            o.invoice_status = OrderInvoiceStatus.PENDING.value

        numbers = ", ".join(o.order_number for o in orders)
        note = create_notification(
            self.db,
            user_id=customer.id,
            type=NotificationType.INVOICE_CREATED.value,
            title=f"Invoice {invoice.invoice_number}",
            message=f"An invoice of {invoice.currency_symbol}{invoice.total:.2f} was created for {numbers}.",
            order_id=orders[0].id,
            sender_role="admin",
        )
        self.db.commit()
        log.info("invoice_created", invoice_id=str(invoice.id), invoice_number=invoice.invoice_number, orders=len(orders), total=invoice.total)

        self._emit(customer.id, "newNotification", notification_to_dict(note))
        self._emit(customer.id, "invoiceCreated", invoice_to_dict(invoice))
        if not self._send_invoice_email(invoice):
            log.warning("invoice_email_not_sent", invoice_id=str(invoice.id))
        return invoice

    def update(self, actor: User, invoice_id, changes: Dict[str, Any]) -> Invoice:
        self._require_admin(actor)
        invoice = self.get_invoice(invoice_id)
        if invoice.payment_status != PaymentStatus.UNPAID.value:
            raise ValidationError("Only unpaid invoices can be edited")
        if changes.get("tax") is not None and changes["tax"] < 0:
            raise ValidationError("tax cannot be negative")
        items = changes.get("items")
        if items is not None:
            if not items:
                raise ValidationError("Invoice needs at least one item")
            invoice.items = [dict(i) for i in items]
        if changes.get("tax") is not None:
            invoice.tax = round(changes["tax"], 2)
        if changes.get("notes") is not None:
            invoice.notes = changes["notes"]
        if "due_date" in changes:
            invoice.due_date = changes["due_date"]
        if changes.get("currency"):
            invoice.currency = changes["currency"].upper()
            invoice.currency_symbol = CURRENCY_SYMBOLS.get(invoice.currency, invoice.currency)
        invoice.subtotal = items_subtotal(invoice.items or [])
        invoice.total = round(invoice.subtotal + (invoice.tax or 0), 2)
        # provider order was created for the old amount
        invoice.paypal_order_id = None
        self.db.commit()
        log.info("invoice_updated", invoice_id=str(invoice.id), total=invoice.total)
        return invoice

    def cancel(self, actor: User, invoice_id) -> Invoice:
        self._require_admin(actor)
        invoice = self.get_invoice(invoice_id)
        if invoice.payment_status == PaymentStatus.PAID.value:
            raise ValidationError("Paid invoices cannot be cancelled")
        invoice.payment_status = PaymentStatus.CANCELLED.value
        for o in invoice.orders:
            o.invoice_status = OrderInvoiceStatus.CANCELLED.value
        self.db.commit()
        log.info("invoice_cancelled", invoice_id=str(invoice.id))
        return invoice

    def resend(self, actor: User, invoice_id) -> Invoice:
        self._require_admin(actor)
        invoice = self.get_invoice(invoice_id)
        if not self._send_invoice_email(invoice):
            raise ExternalServiceError("Invoice exists but email failed to send. Please check email configuration.")
        log.info("invoice_resent", invoice_id=str(invoice.id))
        return invoice

    def list_invoices(
        self,
        actor: User,
        *,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Invoice]:
        q = self.db.query(Invoice)
        if actor.role == UserRole.CUSTOMER.value:
            q = q.filter(Invoice.customer_id == actor.id)
        elif actor.role != UserRole.ADMIN.value:
            raise AuthorizationError("Forbidden")
        if status:
            q = q.filter(Invoice.payment_status == status)
        if start_date:
            q = q.filter(Invoice.created_at >= start_date)
        if end_date:
            q = q.filter(Invoice.created_at <= end_date)
        return q.order_by(Invoice.created_at.desc()).all()

    def get_for(self, actor: User, invoice_id) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if actor.role != UserRole.ADMIN.value and invoice.customer_id != actor.id:
            raise AuthorizationError()
        if actor.id == invoice.customer_id and not invoice.customer_viewed:
            invoice.customer_viewed = True
            self.db.commit()
        return invoice

    # ------------------------------------------------------------------
    # payments
    # ------------------------------------------------------------------

    def _gateway(self) -> PayPalGateway:
        if self.gateway is None:
            raise ExternalServiceError("Payment provider is not configured")
        return self.gateway

    @staticmethod
    def _ensure_payable(invoice: Invoice) -> None:
        if invoice.payment_status == PaymentStatus.PAID.value:
            raise ValidationError("This invoice has already been paid")
        if invoice.payment_status == PaymentStatus.CANCELLED.value:
            raise ValidationError("This invoice has been cancelled")

    def create_payment(self, actor: User, invoice_id) -> Dict[str, Any]:
        invoice = self.get_invoice(invoice_id)
        self._require_payer(invoice, actor)
        self._ensure_payable(invoice)
        country_code = get_country_code(invoice.country)
        result = self._gateway().create_order(
            amount=invoice.total,
            currency=invoice.currency,
            reference=str(invoice.id),
            description=f"Invoice {invoice.invoice_number}",
            country_code=country_code,
        )
        invoice.paypal_order_id = result["order_id"]
        self.db.commit()
        log.info("payment_initiated", invoice_id=str(invoice.id), paypal_order_id=result["order_id"], country_code=country_code)
        return {"paypalOrderId": result["order_id"], "approvalUrl": result.get("approval_url"), "status": result.get("status")}

    def capture_payment(self, actor: User, invoice_id, paypal_order_id: str) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        self._require_payer(invoice, actor)
        self._ensure_payable(invoice)
        self._check_provider_order(invoice, paypal_order_id)
        country_code = get_country_code(invoice.country)
        self._gateway().capture_order(paypal_order_id, country_code)
        return self._settle(invoice, paypal_order_id, sender_role="customer")

    def verify_payment(self, actor: Optional[User], invoice_id, transaction_id: str) -> Invoice:
        """Re-query the provider and mark the invoice paid. ``actor`` is None for the public link."""
        invoice = self.get_invoice(invoice_id)
        if actor is not None:
            self._require_payer(invoice, actor)
        self._ensure_payable(invoice)
        self._check_provider_order(invoice, transaction_id)
        return self._settle(invoice, transaction_id, sender_role="customer")

    def handle_webhook(self, event: Dict[str, Any]) -> Optional[Invoice]:
        """PAYMENT.CAPTURE.COMPLETED: find the invoice by provider order id and verify it."""
        event_type = event.get("event_type")
        if event_type != "PAYMENT.CAPTURE.COMPLETED":
            log.info("paypal_webhook_ignored", event_type=event_type)
            return None
        resource = event.get("resource") or {}
        related = ((resource.get("supplementary_data") or {}).get("related_ids") or {})
        paypal_order_id = related.get("order_id")
        if not paypal_order_id:
            log.warning("paypal_webhook_without_order", capture_id=resource.get("id"))
            return None
        invoice = self.db.query(Invoice).filter(Invoice.paypal_order_id == paypal_order_id).first()
        if not invoice:
            log.warning("paypal_webhook_unknown_order", paypal_order_id=paypal_order_id)
            return None
        if invoice.payment_status == PaymentStatus.PAID.value:
            return invoice
        return self._settle(invoice, paypal_order_id, sender_role="system")

    def payment_status(self, actor: User, invoice_id) -> Dict[str, Any]:
        invoice = self.get_invoice(invoice_id)
        if actor.role != UserRole.ADMIN.value and invoice.customer_id != actor.id:
            raise AuthorizationError("You do not have permission to view this invoice")
        return {
            "paymentStatus": invoice.payment_status,
            "paymentDetails": invoice_to_dict(invoice, include_orders=False)["paymentDetails"],
        }

    def _check_provider_order(self, invoice: Invoice, paypal_order_id: Optional[str]) -> None:
        if not paypal_order_id:
            raise ValidationError("PayPal order ID is required")
        if invoice.paypal_order_id and invoice.paypal_order_id != paypal_order_id:
            raise ValidationError("Transaction does not belong to this invoice")
        self._check_not_claimed(invoice, paypal_order_id)

    def _check_not_claimed(self, invoice: Invoice, provider_id: str) -> None:
        """A provider order or capture settles at most one invoice."""
        claimed = (
            self.db.query(Invoice.id)
            .filter(
                Invoice.id != invoice.id,
                (Invoice.paypal_order_id == provider_id) | (Invoice.transaction_id == provider_id),
            )
            .first()
        )
        if claimed:
            log.warning("payment_reused", invoice_id=str(invoice.id), provider_id=provider_id, claimed_by=str(claimed[0]))
            raise ValidationError("Transaction does not belong to this invoice")

    def _settle(self, invoice: Invoice, paypal_order_id: str, *, sender_role: str) -> Invoice:
        result = self._gateway().get_order(paypal_order_id, get_country_code(invoice.country))
        if result.get("status") != "COMPLETED":
            log.warning("payment_not_completed", invoice_id=str(invoice.id), provider_status=result.get("status"))
            raise ValidationError("Payment not completed")
        if result.get("reference_id") != str(invoice.id):
            log.warning("payment_reference_mismatch", invoice_id=str(invoice.id), reference_id=result.get("reference_id"))
            raise ValidationError("Transaction does not belong to this invoice")
        if result.get("capture_id"):
            self._check_not_claimed(invoice, result["capture_id"])
        amount, currency = result.get("amount"), (result.get("currency") or "").upper()
        if amount is None or abs(float(amount) - float(invoice.total)) > AMOUNT_TOLERANCE or currency != invoice.currency.upper():
            log.warning(
                "payment_amount_mismatch",
                invoice_id=str(invoice.id),
                expected=invoice.total,
                expected_currency=invoice.currency,
                received=amount,
                received_currency=currency,
            )
            raise ValidationError("Payment amount does not match invoice")

        invoice.payment_status = PaymentStatus.PAID.value
        invoice.paypal_order_id = paypal_order_id
        invoice.transaction_id = result.get("capture_id") or result.get("order_id")
        invoice.payer_id = result.get("payer_id")
        invoice.payer_email = result.get("payer_email")
        invoice.payment_method = "PayPal"
        invoice.paid_at = datetime.utcnow()
        for o in invoice.orders:
            o.invoice_status = OrderInvoiceStatus.PAID.value
        notes = notify_admins(
            self.db,
            type=NotificationType.INVOICE_PAID.value,
            title=f"Invoice {invoice.invoice_number} Paid",
            message=f"{invoice.customer.name} paid invoice {invoice.invoice_number} ({invoice.currency_symbol}{invoice.total:.2f}).",
            order_id=invoice.orders[0].id if invoice.orders else None,
            sender_role=sender_role,
        )
        self.db.commit()
        log.info("invoice_paid", invoice_id=str(invoice.id), paypal_order_id=paypal_order_id, total=invoice.total)

        for n in notes:
            self._emit(n.user_id, "newNotification", notification_to_dict(n))
        for admin in get_admins(self.db):
            self._emit(admin.id, "invoicePaid", {"invoiceId": str(invoice.id), "invoiceNumber": invoice.invoice_number})
        return invoice
