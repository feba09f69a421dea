"""
Closed value sets shared by models, services and schemas.

Columns store the plain ``.value`` strings so rows stay readable from SQL.
"""
from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    ADMIN = "admin"


class OrderType(str, Enum):
    """Order kind; also the employee specialty required to work on it."""
    VECTOR = "vector"
    DIGITIZING = "digitizing"
    PATCHES = "patches"


class OrderStatus(str, Enum):
    IN_PROGRESS = "In Progress"
    WAITING_FOR_APPROVAL = "Waiting for Approval"  # admin uploaded a sample
    DESIGN_APPROVED = "Design Approved"
    IN_REVISION = "In Revision"
    MANUFACTURING = "Manufacturing"
    REVISION_READY = "Revision Ready"  # admin uploaded a revision
    REVISION_APPROVED = "Revision Approved"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    SUPERSEDED = "Superseded"  # replaced by a revision order


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


class SampleType(str, Enum):
    INITIAL = "initial"
    REVISION = "revision"


class PendingWorkState(str, Enum):
    PENDING = "pending"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class OrderInvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class NotificationType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_COMPLETED = "order_completed"
    ORDER_REJECTED = "order_rejected"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_REASSIGNED = "order_reassigned"
    ORDER_DELETED = "order_deleted"
    SAMPLE_UPLOADED = "sample_uploaded"
    REVISION_UPLOADED = "revision_uploaded"
    REVISION_REQUESTED = "revision_requested"
    TRACKING_NUMBER_ADDED = "tracking_number_added"
    EMPLOYEE_WORK_PENDING = "employee_work_pending"
    WORK_APPROVED = "work_approved"
    WORK_REJECTED = "work_rejected"
    INVOICE_CREATED = "invoice_created"
    INVOICE_PAID = "invoice_paid"
    ADMIN_NOTE_ADDED = "admin_note_added"


class ActivityType(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    ORDER_VIEW = "order_view"
    ORDER_UPDATE = "order_update"
    REPORT_SUBMIT = "report_submit"
    PAGE_VIEW = "page_view"
    HEARTBEAT = "heartbeat"


def values(enum_cls) -> set:
    return {member.value for member in enum_cls}


ORDER_NUMBER_PREFIXES = {
    OrderType.VECTOR.value: "VEC",
    OrderType.DIGITIZING.value: "DIG",
    OrderType.PATCHES.value: "PAT",
}

FILE_FORMATS = ["AI", "CDR", "SVG", "PDF", "EPS", "Other"]
DIGITIZING_UNITS = ["inches", "cm", "mm"]
PATCH_UNITS = ["inches", "centimeters", "millimeters"]
PATCH_STYLES = [
    "Embroidery Patches",
    "Sublimation Patches",
    "Leather Patches",
    "PVC / Silicon Patches",
    "Woven Patches",
    "Chenille Patches",
    "Keychains",
    "TPU Patches",
]
PATCH_BACKING_STYLES = ["Iron On", "Sewn On", "Peel N Stick", "Velcro M+F"]
