from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InvoiceItem(BaseModel):
    description: str
    quantity: int = 1
    price: float = 0


class InvoiceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_ids: List[str] = Field(default_factory=list, alias="orderIds")
    # single-order form kept for older clients
    order_id: Optional[str] = Field(default=None, alias="orderId")
    items: Optional[List[InvoiceItem]] = None
    tax: float = 0
    notes: Optional[str] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    currency: Optional[str] = None
    country: Optional[str] = None


class InvoiceUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: Optional[List[InvoiceItem]] = None
    tax: Optional[float] = None
    notes: Optional[str] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    currency: Optional[str] = None


class PaymentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(alias="invoiceId")


class PaymentCapture(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(alias="invoiceId")
    paypal_order_id: str = Field(alias="paypalOrderId")


class PaymentVerify(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")


def _iso(dt):
    return dt.isoformat() if dt else None


def invoice_to_dict(inv, *, include_orders: bool = True) -> dict:
    d = {
        "id": str(inv.id),
        "invoiceNumber": inv.invoice_number,
        "customerId": str(inv.customer_id),
        "customer": {"id": str(inv.customer.id), "name": inv.customer.name, "email": inv.customer.email}
        if inv.customer else None,
        "items": inv.items or [],
        "subtotal": inv.subtotal,
        "tax": inv.tax,
        "total": inv.total,
        "country": inv.country,
        "currency": inv.currency,
        "currencySymbol": inv.currency_symbol,
        "paymentStatus": inv.payment_status,
        "paypalOrderId": inv.paypal_order_id,
        "paymentDetails": {
            "transactionId": inv.transaction_id,
            "payerId": inv.payer_id,
            "payerEmail": inv.payer_email,
            "paymentMethod": inv.payment_method,
            "paidAt": _iso(inv.paid_at),
        },
        "generatedByAdmin": bool(inv.generated_by_admin),
        "invoiceSent": bool(inv.invoice_sent),
        "customerViewed": bool(inv.customer_viewed),
        "notes": inv.notes or "",
        "dueDate": _iso(inv.due_date),
        "orderTotal": inv.order_total,
        "createdAt": _iso(inv.created_at),
        "updatedAt": _iso(inv.updated_at),
    }
    if include_orders:
        d["orders"] = [
            {"id": str(o.id), "orderNumber": o.order_number, "orderType": o.order_type, "status": o.status}
            for o in inv.orders
        ]
    return d


def public_invoice_to_dict(inv) -> dict:
    """Only what the payment page needs."""
    first = inv.orders[0] if inv.orders else None
    return {
        "id": str(inv.id),
        "invoiceNumber": inv.invoice_number,
        "orderNumbers": [o.order_number for o in inv.orders],
        "designName": ((first.patch_design_name or first.design_name) if first else None) or "Custom Order",
        "items": inv.items or [],
        "total": inv.total,
        "currency": inv.currency,
        "currencySymbol": inv.currency_symbol,
        "status": inv.payment_status,
    }
