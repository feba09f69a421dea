import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column, validates

from ..db import Base
from ..exceptions import ValidationError
from .enums import (
    UserRole,
    OrderType,
    OrderStatus,
    ApprovalStatus,
    SampleType,
    PendingWorkState,
    PaymentStatus,
    OrderInvoiceStatus,
    values,
)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many Invoice<->Order (consolidated invoices)
invoice_orders = Table(
    "invoice_orders",
    Base.metadata,
    Column("invoice_id", UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), primary_key=True),
    Column("order_id", UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("invoice_id", "order_id", name="uq_invoice_order"),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.CUSTOMER.value, index=True)
    employee_role: Mapped[Optional[str]] = mapped_column(String(20))  # vector|digitizing|patches, employees only
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    customer_number: Mapped[Optional[str]] = mapped_column(String(20), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    company: Mapped[Optional[str]] = mapped_column(String(255))
    invoicing_email: Mapped[Optional[str]] = mapped_column(String(255))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    street: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip_code: Mapped[Optional[str]] = mapped_column(String(20))
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_active_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived from Order.assigned_to_id; never written directly
    assigned_orders = relationship(
        "Order",
        foreign_keys="Order.assigned_to_id",
        viewonly=True,
        order_by="Order.created_at.desc()",
    )

    @validates("role")
    def _validate_role(self, key, value):
        if value not in values(UserRole):
            raise ValidationError(f"Invalid role: {value}")
        return value

    @validates("employee_role")
    def _validate_employee_role(self, key, value):
        if value is not None and value not in values(OrderType):
            raise ValidationError(
                f"Invalid employeeRole. Allowed: {', '.join(sorted(values(OrderType)))}"
            )
        return value


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    order_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Vector & digitizing
    design_name: Mapped[Optional[str]] = mapped_column(String(255))
    file_format: Mapped[Optional[str]] = mapped_column(String(20))
    other_instructions: Mapped[Optional[str]] = mapped_column(Text, default="")

    # Patches
    patch_design_name: Mapped[Optional[str]] = mapped_column(String(255))
    patch_style: Mapped[Optional[str]] = mapped_column(String(100))
    patch_amount: Mapped[Optional[float]] = mapped_column(Float)
    patch_unit: Mapped[Optional[str]] = mapped_column(String(20))
    patch_length: Mapped[Optional[float]] = mapped_column(Float)
    patch_width: Mapped[Optional[float]] = mapped_column(Float)
    patch_backing_style: Mapped[Optional[str]] = mapped_column(String(50))
    patch_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    patch_address: Mapped[Optional[str]] = mapped_column(Text)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), default="")

    # Digitizing
    placement_of_design: Mapped[Optional[str]] = mapped_column(String(255))
    custom_measurements: Mapped[Optional[str]] = mapped_column(String(255))
    length: Mapped[Optional[float]] = mapped_column(Float, default=0)
    width: Mapped[Optional[float]] = mapped_column(Float, default=0)
    unit: Mapped[Optional[str]] = mapped_column(String(20), default="inches")
    custom_sizes: Mapped[Optional[dict]] = mapped_column(JSON)

    # Common
    items: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{description, quantity, price}]
    files: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{url, filename, size, mimetype}]
    status: Mapped[str] = mapped_column(String(40), default=OrderStatus.IN_PROGRESS.value, index=True)
    customer_approval_status: Mapped[str] = mapped_column(String(30), default=ApprovalStatus.PENDING.value)
    total_amount: Mapped[float] = mapped_column(Float, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, default="")
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text, default="")

    # Revision lineage
    parent_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), index=True)
    is_revision: Mapped[bool] = mapped_column(Boolean, default=False)
    revision_number: Mapped[int] = mapped_column(Integer, default=0)  # 0 = original
    revision_reason: Mapped[Optional[str]] = mapped_column(Text, default="")

    # Assignment & reporting
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    required_employee_role: Mapped[str] = mapped_column(String(20), nullable=False)
    report: Mapped[Optional[str]] = mapped_column(Text, default="")
    completed_count: Mapped[int] = mapped_column(Integer, default=0)

    # Invoice linkage (current invoice; history lives in invoice_orders)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="SET NULL"))
    has_invoice: Mapped[bool] = mapped_column(Boolean, default=False)
    invoice_status: Mapped[str] = mapped_column(String(20), default=OrderInvoiceStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("User", foreign_keys=[customer_id])
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    parent_order = relationship("Order", remote_side="Order.id")
    invoice = relationship("Invoice", foreign_keys=[invoice_id])
    invoices = relationship("Invoice", secondary=invoice_orders, back_populates="orders")
    sample_images = relationship(
        "SampleImage",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SampleImage.uploaded_at",
    )
    pending_work = relationship(
        "PendingWork",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @validates("order_type")
    def _order_type_is_immutable(self, key, value):
        if value not in values(OrderType):
            raise ValidationError("Invalid order type.")
        if self.order_type is not None and value != self.order_type:
            raise ValidationError("orderType cannot be changed after creation")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in values(OrderStatus):
            raise ValidationError(f"Invalid status: {value}")
        return value


class SampleImage(Base):
    """Admin-published preview shown to the customer."""
    __tablename__ = "order_sample_images"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(20), default=SampleType.INITIAL.value)
    comments: Mapped[Optional[str]] = mapped_column(Text, default="")
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    order = relationship("Order", back_populates="sample_images")


class PendingWork(Base):
    """Employee-submitted work awaiting admin review.

    No row means no pending work. ``state`` distinguishes work awaiting review
    from work the admin rejected (kept so the employee can see what and why).
    """
    __tablename__ = "order_pending_work"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=PendingWorkState.PENDING.value)
    pending_status: Mapped[str] = mapped_column(String(40), default=OrderStatus.WAITING_FOR_APPROVAL.value)
    pending_files: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{url, filename, uploadedAt, comments}]
    pending_report: Mapped[Optional[str]] = mapped_column(Text, default="")
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    submitted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, default="")

    order = relationship("Order", back_populates="pending_work")
    submitted_by = relationship("User", foreign_keys=[submitted_by_id])

    @property
    def has_pending_work(self) -> bool:
        return self.state == PendingWorkState.PENDING.value

    @property
    def was_rejected(self) -> bool:
        return self.state == PendingWorkState.REJECTED.value


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = uuid_pk()
    invoice_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    items: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    subtotal: Mapped[float] = mapped_column(Float, default=0)
    tax: Mapped[float] = mapped_column(Float, default=0)
    total: Mapped[float] = mapped_column(Float, default=0)
    country: Mapped[str] = mapped_column(String(100), default="USA")
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    currency_symbol: Mapped[str] = mapped_column(String(5), default="$")
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.UNPAID.value, index=True)

    # PayPal
    paypal_order_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64))
    payer_id: Mapped[Optional[str]] = mapped_column(String(64))
    payer_email: Mapped[Optional[str]] = mapped_column(String(255))
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), default="PayPal")
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    generated_by_admin: Mapped[bool] = mapped_column(Boolean, default=True)
    invoice_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    customer_viewed: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, default="")
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    order_total: Mapped[float] = mapped_column(Float, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("User", foreign_keys=[customer_id])
    orders = relationship("Order", secondary=invoice_orders, back_populates="invoices", order_by="Order.created_at")

    @validates("total")
    def _total_frozen_once_paid(self, key, value):
        if self.payment_status == PaymentStatus.PAID.value and self.total is not None and value != self.total:
            raise ValidationError("Invoice total cannot change once paid")
        return value


class Notification(Base):
    """Per-user inbox entry. Only ``is_read`` changes after creation."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"))
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), default="admin")  # admin|customer|employee|system
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    assigned_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    previous_assigned_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    order = relationship("Order", foreign_keys=[order_id])

    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'is_read'),
        Index('idx_notifications_created', 'created_at'),
    )


class ActivityLog(Base):
    """Append-only user activity trail"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))
    session_duration: Mapped[Optional[float]] = mapped_column(Float)  # minutes, for logout
    details: Mapped[Optional[dict]] = mapped_column(JSON)

    __table_args__ = (
        Index('idx_activity_user_time', 'user_id', 'timestamp'),
    )
