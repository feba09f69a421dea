"""
Identifier factories for orders, invoices and customers.

Order numbers are derived from the order type at construction time by the
caller, never from a column default reading sibling fields.
"""
import random
import time
from typing import Optional

from sqlalchemy.orm import Session

from ..models.enums import ORDER_NUMBER_PREFIXES, UserRole
from ..models.models import User


def _millis() -> int:
    return int(time.time() * 1000)


def new_order_number(order_type: str) -> str:
    prefix = ORDER_NUMBER_PREFIXES.get(order_type, "ORD")
    return f"{prefix}-{_millis()}-{random.randint(0, 9999):04d}"


def new_invoice_number() -> str:
    return f"INV-{_millis()}-{random.randint(0, 99999)}"


def next_customer_number(db: Session, country: Optional[str]) -> str:
    """Next ``<CCC>-NNNN`` code for the country, e.g. ``GER-0003``."""
    prefix = (country or "").strip()[:3].upper()
    if not prefix:
        raise ValueError("country is required to generate a customer number")
    rows = (
        db.query(User.customer_number)
        .filter(User.role == UserRole.CUSTOMER.value, User.customer_number.like(f"{prefix}-%"))
        .all()
    )
    highest = 0
    for (code,) in rows:
        try:
            highest = max(highest, int(code.split("-", 1)[1]))
        except (IndexError, ValueError):
            continue
    return f"{prefix}-{highest + 1:04d}"
