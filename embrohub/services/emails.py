"""
Email bodies. Each builder returns ``(subject, html)``.
"""
from html import escape
from typing import List, Tuple

from ..config import settings
from ..models.models import Order, User, Invoice


def _layout(heading: str, body: str) -> str:
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px;margin:0 auto\">"
        f"<h2 style=\"color:#1f2937\">{escape(heading)}</h2>"
        f"{body}"
        f"<p style=\"color:#6b7280;font-size:12px\">{escape(settings.brand_name)}</p>"
        "</div>"
    )


def _order_title(order: Order) -> str:
    return order.patch_design_name if order.order_type == "patches" else (order.design_name or "")


def _order_rows(order: Order) -> str:
    rows = [
        ("Order Number", order.order_number),
        ("Type", order.order_type),
        ("Design", _order_title(order)),
        ("Status", order.status),
    ]
    cells = "".join(
        f"<tr><td style=\"padding:4px 8px;color:#6b7280\">{escape(k)}</td>"
        f"<td style=\"padding:4px 8px\">{escape(str(v or ''))}</td></tr>"
        for k, v in rows
    )
    return f"<table>{cells}</table>"


def order_confirmation(customer: User, order: Order) -> Tuple[str, str]:
    body = (
        f"<p>Hi {escape(customer.name)},</p>"
        "<p>Thank you for your order. Our team has received it and will start working on it shortly.</p>"
        f"{_order_rows(order)}"
        f"<p>Total: {order.total_amount:.2f}</p>"
    )
    return f"Order Confirmed: {order.order_number}", _layout("Order Confirmed", body)


def admin_new_order(order: Order, customer: User) -> Tuple[str, str]:
    body = (
        f"<p>{escape(customer.name)} ({escape(customer.email)}) placed a new order.</p>"
        f"{_order_rows(order)}"
        f"<p><a href=\"{settings.frontend_url}/admin/orders/{order.id}\">Open in dashboard</a></p>"
    )
    return f"New Order: {order.order_number} from {customer.name}", _layout("New Order", body)


def order_assignment(employee: User, order: Order) -> Tuple[str, str]:
    body = (
        f"<p>Hi {escape(employee.name)},</p>"
        "<p>A new order has been assigned to you.</p>"
        f"{_order_rows(order)}"
    )
    return f"New Order Assigned: {order.order_number}", _layout("New Order Assigned", body)


def bulk_order_assignment(employee: User, orders: List[Order]) -> Tuple[str, str]:
    items = "".join(
        f"<li>{escape(o.order_number)} ({escape(o.order_type)}) {escape(_order_title(o) or '')}</li>"
        for o in orders
    )
    body = (
        f"<p>Hi {escape(employee.name)},</p>"
        f"<p>{len(orders)} orders have been assigned to you:</p><ul>{items}</ul>"
    )
    return f"{len(orders)} New Orders Assigned to You", _layout("New Orders Assigned", body)


def status_update(customer: User, order: Order) -> Tuple[str, str]:
    body = f"<p>Hi {escape(customer.name)},</p><p>Your order status has been updated.</p>{_order_rows(order)}"
    if order.rejected_reason:
        body += f"<p>Reason: {escape(order.rejected_reason)}</p>"
    return f"Order {order.order_number} - Status: {order.status}", _layout("Order Status Update", body)


def tracking_number(customer: User, order: Order) -> Tuple[str, str]:
    body = (
        f"<p>Hi {escape(customer.name)},</p>"
        "<p>Your patches are on the way.</p>"
        f"<p>Tracking number: <strong>{escape(order.tracking_number or '')}</strong></p>"
        f"{_order_rows(order)}"
    )
    return f"Your order {order.order_number} has shipped", _layout("Order Shipped", body)


def invoice(customer: User, inv: Invoice) -> Tuple[str, str]:
    lines = "".join(
        f"<tr><td style=\"padding:4px 8px\">{escape(str(i.get('description', '')))}</td>"
        f"<td style=\"padding:4px 8px\">{i.get('quantity', 1)}</td>"
        f"<td style=\"padding:4px 8px\">{inv.currency_symbol}{float(i.get('price', 0)):.2f}</td></tr>"
        for i in (inv.items or [])
    )
    pay_link = f"{settings.frontend_url}/invoice/{inv.id}"
    body = (
        f"<p>Hi {escape(customer.name)},</p>"
        f"<p>Please find your invoice <strong>{escape(inv.invoice_number)}</strong> below.</p>"
        f"<table>{lines}</table>"
        f"<p>Subtotal: {inv.currency_symbol}{inv.subtotal:.2f}<br>"
        f"Tax: {inv.currency_symbol}{inv.tax:.2f}<br>"
        f"<strong>Total: {inv.currency_symbol}{inv.total:.2f} {escape(inv.currency)}</strong></p>"
        f"<p><a href=\"{pay_link}\">View and pay this invoice</a></p>"
    )
    return f"Invoice {inv.invoice_number} - {settings.brand_name}", _layout("Invoice", body)


def custom_order_email(customer: User, order: Order, message: str) -> str:
    body = (
        f"<p>Hi {escape(customer.name)},</p>"
        f"<p>{escape(message).replace(chr(10), '<br>')}</p>"
        f"<p style=\"color:#6b7280\">Regarding order {escape(order.order_number)}</p>"
    )
    return _layout(f"Order {order.order_number}", body)


def employee_welcome(employee: User, temp_password: str) -> Tuple[str, str]:
    body = (
        f"<p>Hi {escape(employee.name)},</p>"
        f"<p>An employee account has been created for you at {escape(settings.brand_name)}.</p>"
        f"<p>Username: <strong>{escape(employee.username)}</strong><br>"
        f"Temporary password: <strong>{escape(temp_password)}</strong></p>"
        f"<p>Please <a href=\"{settings.frontend_url}/login\">log in</a> and change your password.</p>"
    )
    return f"Welcome to {settings.brand_name}", _layout("Welcome", body)
