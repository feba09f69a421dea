"""
Order lifecycle engine.

Every transition follows the same order of work:

1. load the order and check the actor's role and ownership,
2. validate the input,
3. mutate rows and add Notification rows, then commit once,
4. push real-time events and send emails.

Steps 1 and 2 never touch the session. Failures in step 4 are logged and
skipped; they never undo the committed transition.
"""
import io
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import (
    EmbroHubError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ExternalServiceError,
)
from ..models.enums import (
    UserRole,
    OrderType,
    OrderStatus,
    ApprovalStatus,
    SampleType,
    PendingWorkState,
    NotificationType,
    ActivityType,
    FILE_FORMATS,
    DIGITIZING_UNITS,
    PATCH_UNITS,
    PATCH_STYLES,
    PATCH_BACKING_STYLES,
    values,
)
from ..models.models import Order, User, SampleImage, PendingWork, Notification, ActivityLog
from ..schemas.orders import order_to_dict
from ..storage.provider import StorageProvider, canonical_key
from . import emails
from .activity import record_activity
from .mailer import Mailer
from .notifications import create_notification, notify_admins, notification_to_dict, get_admins
from .numbering import new_order_number
from .push_hub import PushChannel, user_room


log = structlog.get_logger()


# (attribute, request field) pairs that must be present per order type
REQUIRED_FIELDS = {
    OrderType.VECTOR.value: [("design_name", "designName"), ("file_format", "fileFormat")],
    OrderType.DIGITIZING.value: [("length", "length"), ("width", "width"), ("unit", "unit")],
    OrderType.PATCHES.value: [
        ("patch_design_name", "patchDesignName"),
        ("patch_style", "patchStyle"),
        ("patch_amount", "patchAmount"),
        ("patch_unit", "patchUnit"),
        ("patch_length", "patchLength"),
        ("patch_width", "patchWidth"),
        ("patch_backing_style", "patchBackingStyle"),
        ("patch_quantity", "patchQuantity"),
        ("patch_address", "patchAddress"),
    ],
}

MISSING_LABELS = {
    OrderType.VECTOR.value: "vector",
    OrderType.DIGITIZING.value: "digitizing",
    OrderType.PATCHES.value: "patch",
}

TYPE_FIELDS = {
    OrderType.VECTOR.value: ["design_name", "file_format", "other_instructions"],
    OrderType.DIGITIZING.value: [
        "design_name",
        "other_instructions",
        "placement_of_design",
        "custom_measurements",
        "length",
        "width",
        "unit",
        "custom_sizes",
    ],
    OrderType.PATCHES.value: [
        "patch_design_name",
        "patch_style",
        "patch_amount",
        "patch_unit",
        "patch_length",
        "patch_width",
        "patch_backing_style",
        "patch_quantity",
        "patch_address",
    ],
}

# Copied from parent to revision regardless of type
REVISION_COPY_FIELDS = sorted({f for fields in TYPE_FIELDS.values() for f in fields})

CHOICES = {
    "file_format": ("fileFormat", FILE_FORMATS),
    "unit": ("unit", DIGITIZING_UNITS),
    "patch_unit": ("patchUnit", PATCH_UNITS),
    "patch_style": ("patchStyle", PATCH_STYLES),
    "patch_backing_style": ("patchBackingStyle", PATCH_BACKING_STYLES),
}

POSITIVE_FIELDS = {
    "length": "length",
    "width": "width",
    "patch_length": "patchLength",
    "patch_width": "patchWidth",
    "patch_amount": "patchAmount",
    "patch_quantity": "patchQuantity",
}

VECTOR_PRICE = 50.0
DIGITIZING_BASE_PRICE = 20.0
PATCH_BASE_PRICE = 10.0


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _fmt(n) -> str:
    return f"{float(n):g}"


def price_items(order_type: str, data: Dict[str, Any]) -> List[dict]:
    """Billable lines for a new order."""
    if order_type == OrderType.VECTOR.value:
        return [{
            "description": f"{data['design_name']} ({data['file_format']})",
            "quantity": 1,
            "price": VECTOR_PRICE,
        }]
    if order_type == OrderType.DIGITIZING.value:
        length, width, unit = float(data["length"]), float(data["width"]), data["unit"]
        name = data.get("design_name") or "Digitizing"
        return [{
            "description": f"{name} - {_fmt(length)}{unit} x {_fmt(width)}{unit}",
            "quantity": 1,
            "price": round(DIGITIZING_BASE_PRICE + length * width, 2),
        }]
    return [{
        "description": f"{data['patch_design_name']} ({data['patch_style']})",
        "quantity": int(data["patch_quantity"]),
        "price": round(PATCH_BASE_PRICE + float(data["patch_length"]) * float(data["patch_width"]), 2),
    }]


def items_total(items: Iterable[dict]) -> float:
    return round(sum(float(i.get("price") or 0) * int(i.get("quantity") or 0) for i in items), 2)


def _as_uuid(value, entity: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(entity, value)


def _parse_ts(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.utcnow()


class OrderLifecycle:
    """State machine for orders. Collaborators are injected so tests can swap them."""

    def __init__(
        self,
        db: Session,
        mailer: Mailer,
        push: PushChannel,
        storage: Optional[StorageProvider] = None,
    ):
        self.db = db
        self.mailer = mailer
        self.push = push
        self.storage = storage

    # ------------------------------------------------------------------
    # lookups and guards
    # ------------------------------------------------------------------

    def get_order(self, order_id) -> Order:
        order = self.db.get(Order, _as_uuid(order_id, "Order"))
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    def _get_employee(self, employee_id) -> User:
        try:
            emp_uuid = uuid.UUID(str(employee_id))
        except (TypeError, ValueError):
            raise ValidationError("Invalid employee")
        employee = self.db.get(User, emp_uuid)
        if not employee or employee.role != UserRole.EMPLOYEE.value:
            raise ValidationError("Invalid employee")
        return employee

    @staticmethod
    def _require_admin(actor: User, message: str = "Not authorized") -> None:
        if actor.role != UserRole.ADMIN.value:
            raise AuthorizationError(message)

    @staticmethod
    def _require_owner(order: Order, actor: User) -> None:
        if order.customer_id != actor.id:
            raise AuthorizationError()

    # ------------------------------------------------------------------
    # side effects (after commit, best-effort)
    # ------------------------------------------------------------------

    def _emit(self, user_id, event: str, payload: Any) -> None:
        try:
            self.push.emit(user_room(user_id), event, payload)
        except Exception as e:
            log.warning("push_failed", user_id=str(user_id), push_event=event, error=str(e))

    def _emit_notifications(self, notifications: Iterable[Notification]) -> None:
        for n in notifications:
            self._emit(n.user_id, "newNotification", notification_to_dict(n))

    def _emit_admins(self, event: str, payload: Any) -> None:
        for admin in get_admins(self.db):
            self._emit(admin.id, event, payload)

    def _email(self, recipient: Optional[str], message: Tuple[str, str], **context) -> bool:
        if not recipient:
            return False
        subject, html = message
        try:
            sent = self.mailer.send(recipient, subject, html)
        except Exception as e:
            log.warning("email_failed", recipient=recipient, subject=subject, error=str(e), **context)
            return False
        if not sent:
            log.warning("email_not_sent", recipient=recipient, subject=subject, **context)
        return sent

    def _expire_assigned_orders(self, *user_ids) -> None:
        for uid in user_ids:
            if uid is None:
                continue
            user = self.db.get(User, uid)
            if user is not None:
                self.db.expire(user, ["assigned_orders"])

    # ------------------------------------------------------------------
    # storage
    # ------------------------------------------------------------------

    def store_upload(self, upload: Dict[str, Any], owner, category: str) -> dict:
        """Persist ``{filename, content, content_type}``; returns an order file descriptor."""
        if self.storage is None:
            raise ExternalServiceError("File storage is not configured")
        filename = upload.get("filename") or "upload"
        key = canonical_key(owner, category, filename)
        try:
            saved = self.storage.save(key, io.BytesIO(upload["content"]), upload.get("content_type"))
        except Exception as e:
            log.error("file_store_failed", key=key, error=str(e))
            raise ExternalServiceError("Failed to store uploaded file", error=str(e))
        return {
            "url": saved["url"],
            "filename": filename,
            "size": saved.get("size"),
            "mimetype": upload.get("content_type"),
        }

    def _delete_stored_files(self, files: Iterable[dict]) -> None:
        if self.storage is None:
            return
        for f in files:
            key = self.storage.key_for_url((f or {}).get("url"))
            if not key:
                continue
            try:
                self.storage.delete(key)
            except Exception as e:
                log.warning("file_delete_failed", key=key, error=str(e))

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def create_order(self, actor: User, data: Dict[str, Any], uploads: Iterable[Dict[str, Any]] = ()) -> Order:
        if actor.role != UserRole.CUSTOMER.value:
            raise AuthorizationError("Only customers can create orders")
        order_type = data.get("order_type")
        if order_type not in values(OrderType):
            raise ValidationError("Invalid order type.")

        uploads = list(uploads)
        descriptors = []
        for f in data.get("files") or []:
            if _blank(f.get("url")):
                raise ValidationError("Every file needs a url")
            descriptors.append({
                "url": f["url"],
                "filename": f.get("filename") or f.get("name"),
                "size": f.get("size"),
                "mimetype": f.get("mimetype"),
            })
        if not descriptors and not uploads:
            raise ValidationError("Please upload at least one file.")

        missing = [name for attr, name in REQUIRED_FIELDS[order_type] if _blank(data.get(attr))]
        if missing:
            raise ValidationError(f"Missing {MISSING_LABELS[order_type]} fields: {', '.join(missing)}")
        for attr in TYPE_FIELDS[order_type]:
            value = data.get(attr)
            if attr in CHOICES and not _blank(value) and value not in CHOICES[attr][1]:
                name, allowed = CHOICES[attr]
                raise ValidationError(f"Invalid {name}. Allowed: {', '.join(allowed)}")
            if attr in POSITIVE_FIELDS and value is not None and float(value) <= 0:
                raise ValidationError(f"{POSITIVE_FIELDS[attr]} must be greater than 0")

        files = [self.store_upload(u, actor.id, "orders") for u in uploads] + descriptors
        items = price_items(order_type, data)
        order = Order(
            order_number=new_order_number(order_type),
            customer_id=actor.id,
            order_type=order_type,
            required_employee_role=order_type,
            status=OrderStatus.IN_PROGRESS.value,
            customer_approval_status=ApprovalStatus.PENDING.value,
            files=files,
            items=items,
            total_amount=items_total(items),
            notes=data.get("notes") or "",
        )
        for attr in TYPE_FIELDS[order_type]:
            if data.get(attr) is not None:
                setattr(order, attr, data[attr])
        self.db.add(order)
        self.db.flush()

        notes = [
            create_notification(
                self.db,
                user_id=actor.id,
                type=NotificationType.ORDER_CREATED.value,
                title="Order Placed Successfully",
                message=f"Your order {order.order_number} has been created successfully.",
                order_id=order.id,
                sender_role="system",
            )
        ]
        notes += notify_admins(
            self.db,
            type=NotificationType.ORDER_CREATED.value,
            title="New Order Received",
            message=f"New {order_type} order {order.order_number} from {actor.name}",
            order_id=order.id,
            sender_role="customer",
        )
        self.db.commit()
        log.info("order_created", order_id=str(order.id), order_number=order.order_number, order_type=order_type)

        self._emit_notifications(notes)
        payload = order_to_dict(order)
        self._emit(actor.id, "orderUpdate", payload)
        self._emit_admins("newOrder", payload)

        self._email(actor.email, emails.order_confirmation(actor, order), order_id=str(order.id))
        admin_recipients = [settings.admin_email] if settings.admin_email else [a.email for a in get_admins(self.db)]
        for recipient in admin_recipients:
            self._email(recipient, emails.admin_new_order(order, actor), order_id=str(order.id))
        return order

    def _assign(self, order: Order, employee: User) -> List[Notification]:
        previous_id = order.assigned_to_id
        order.assigned_to_id = employee.id
        order.assigned_to = employee
        notes = [
            create_notification(
                self.db,
                user_id=employee.id,
                type=NotificationType.ORDER_ASSIGNED.value,
                title=f"Order Assigned: {order.order_number}",
                message=f"You have been assigned order {order.order_number}.",
                order_id=order.id,
                sender_role="admin",
                assigned_employee_id=employee.id,
                previous_assigned_employee_id=previous_id,
            )
        ]
        if previous_id and previous_id != employee.id:
            notes.append(
                create_notification(
                    self.db,
                    user_id=previous_id,
                    type=NotificationType.ORDER_REASSIGNED.value,
                    title=f"Order Reassigned: {order.order_number}",
                    message=f"Order {order.order_number} has been reassigned to another employee.",
                    order_id=order.id,
                    sender_role="admin",
                    assigned_employee_id=employee.id,
                    previous_assigned_employee_id=previous_id,
                )
            )
        return notes

    def assign(self, actor: User, order_id, employee_id) -> Tuple[Order, Optional[uuid.UUID]]:
        self._require_admin(actor, "Only admin can assign orders")
        if _blank(employee_id):
            raise ValidationError("employeeId is required")
        employee = self._get_employee(employee_id)
        order = self.get_order(order_id)
        previous_id = order.assigned_to_id

        notes = self._assign(order, employee)
        self.db.commit()
        self._expire_assigned_orders(previous_id, employee.id)
        log.info("order_assigned", order_id=str(order.id), employee_id=str(employee.id), previous_id=str(previous_id) if previous_id else None)

        self._emit_notifications(notes)
        event = {"orderId": str(order.id), "assignedTo": str(employee.id), "previousAssigned": str(previous_id) if previous_id else None}
        self._emit(employee.id, "orderAssigned", event)
        self._emit_admins("orderAssigned", event)
        self._email(employee.email, emails.order_assignment(employee, order), order_id=str(order.id))
        return order, previous_id

    def bulk_assign(self, actor: User, order_ids: List[Any], employee_id) -> Dict[str, Any]:
        self._require_admin(actor, "Only admin can bulk assign orders")
        if not order_ids:
            raise ValidationError("orderIds (non-empty array) is required")
        if _blank(employee_id):
            raise ValidationError("employeeId is required")
        employee = self._get_employee(employee_id)
        employee_uuid = employee.id

        assigned: List[Order] = []
        failed: List[str] = []
        notes: List[Notification] = []
        previous_ids = set()
        for raw_id in order_ids:
            try:
                order = self.get_order(raw_id)
                previous_id = order.assigned_to_id
                order_notes = self._assign(order, self.db.get(User, employee_uuid))
                self.db.commit()
            except (EmbroHubError, SQLAlchemyError) as e:
                self.db.rollback()
                log.warning("bulk_assign_order_failed", order_id=str(raw_id), error=str(e))
                failed.append(str(raw_id))
                continue
            previous_ids.add(previous_id)
            assigned.append(order)
            notes += order_notes

        employee = self.db.get(User, employee_uuid)
        self._expire_assigned_orders(employee_uuid, *previous_ids)
        log.info("orders_bulk_assigned", employee_id=str(employee_uuid), assigned=len(assigned), failed=len(failed))

        self._emit_notifications(notes)
        event = {"orderIds": [str(o.id) for o in assigned], "employeeId": str(employee_uuid)}
        self._emit(employee_uuid, "bulkAssign", event)
        self._emit_admins("bulkAssign", event)
        if assigned:
            self._email(employee.email, emails.bulk_order_assignment(employee, assigned), employee_id=str(employee_uuid))
        return {"assignedCount": len(assigned), "failed": failed, "orders": assigned}

    def update_order(self, actor: User, order_id, changes: Dict[str, Any]) -> Order:
        """Admin or assigned employee updates status fields; the owner updates notes."""
        order = self.get_order(order_id)
        is_staff = actor.role == UserRole.ADMIN.value or (
            actor.role == UserRole.EMPLOYEE.value and order.assigned_to_id == actor.id
        )
        if not is_staff and order.customer_id != actor.id:
            raise AuthorizationError()
        new_type = changes.get("order_type")
        if new_type is not None and new_type != order.order_type:
            raise ValidationError("orderType cannot be changed after creation")
        if is_staff:
            return self._update_status(actor, order, changes)
        return self._update_notes(order, changes.get("notes"))

    def _update_status(self, actor: User, order: Order, changes: Dict[str, Any]) -> Order:
        status = changes.get("status")
        if status and status not in values(OrderStatus):
            raise ValidationError(f"Invalid status: {status}")

        previous_status = order.status
        previous_tracking = order.tracking_number or ""
        if status:
            order.status = status
        if changes.get("rejected_reason"):
            order.rejected_reason = changes["rejected_reason"]
        if changes.get("report"):
            order.report = changes["report"]
        tracking = changes.get("tracking_number")
        if tracking is not None:
            order.tracking_number = tracking

        status_changed = bool(status) and status != previous_status
        tracking_added = (
            bool(tracking) and tracking != previous_tracking and order.order_type == OrderType.PATCHES.value
        )
        if status_changed and status == OrderStatus.COMPLETED.value:
            order.completed_count = (order.completed_count or 0) + 1

        notes = []
        if status_changed:
            notes.append(
                create_notification(
                    self.db,
                    user_id=order.customer_id,
                    type=NotificationType.ORDER_STATUS_CHANGED.value,
                    title=f"Order {order.order_number} Updated",
                    message=f"Your order status has been updated to {order.status}.",
                    order_id=order.id,
                    sender_role=actor.role,
                )
            )
        if tracking_added:
            notes.append(
                create_notification(
                    self.db,
                    user_id=order.customer_id,
                    type=NotificationType.TRACKING_NUMBER_ADDED.value,
                    title="Tracking Number Added",
                    message=f"Your order {order.order_number} has been shipped! Tracking number: {tracking}",
                    order_id=order.id,
                    sender_role=actor.role,
                )
            )
        if actor.role == UserRole.EMPLOYEE.value:
            record_activity(self.db, user_id=actor.id, activity_type=ActivityType.ORDER_UPDATE.value, order_id=order.id,
                            details={"status": order.status} if status_changed else None)
            if changes.get("report"):
                record_activity(self.db, user_id=actor.id, activity_type=ActivityType.REPORT_SUBMIT.value, order_id=order.id)
        self.db.commit()
        log.info("order_updated", order_id=str(order.id), status=order.status, status_changed=status_changed, actor_role=actor.role)

        self._emit_notifications(notes)
        payload = order_to_dict(order)
        self._emit(order.customer_id, "orderUpdate", payload)
        self._emit_admins("adminOrderUpdate", payload)
        customer = order.customer
        if status_changed and customer:
            self._email(customer.email, emails.status_update(customer, order), order_id=str(order.id))
        if tracking_added and customer:
            self._email(customer.email, emails.tracking_number(customer, order), order_id=str(order.id))
        return order

    def _update_notes(self, order: Order, notes: Optional[str]) -> Order:
        if notes:
            order.notes = notes
        self.db.commit()
        self._emit(order.customer_id, "orderUpdate", order_to_dict(order))
        return order

    def _set_approval(self, actor: User, order_id, approval: str, comments: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        self._require_owner(order, actor)
        order.customer_approval_status = approval
        notes = []
        if approval == ApprovalStatus.REVISION_REQUESTED.value:
            if comments:
                order.notes = (order.notes or "") + "\nRevision Request: " + comments
            notes = notify_admins(
                self.db,
                type=NotificationType.REVISION_REQUESTED.value,
                title="Revision Requested",
                message=f"{actor.name} requested a revision for order {order.order_number}.",
                order_id=order.id,
                sender_role="customer",
            )
        self.db.commit()
        log.info("order_approval_changed", order_id=str(order.id), approval=approval)

        self._emit_notifications(notes)
        payload = order_to_dict(order)
        self._emit_admins("adminOrderUpdate", payload)
        self._emit(order.customer_id, "orderUpdate", payload)
        return order

    def approve(self, actor: User, order_id) -> Order:
        return self._set_approval(actor, order_id, ApprovalStatus.APPROVED.value)

    def request_revision(self, actor: User, order_id, comments: Optional[str] = None) -> Order:
        return self._set_approval(actor, order_id, ApprovalStatus.REVISION_REQUESTED.value, comments)

    def approve_revision(self, actor: User, order_id) -> Order:
        # customers approve; status stays with staff
        return self._set_approval(actor, order_id, ApprovalStatus.APPROVED.value)

    def upload_sample(
        self,
        actor: User,
        order_id,
        *,
        kind: str = SampleType.INITIAL.value,
        files: Optional[List[Dict[str, Any]]] = None,
        cloudinary_url: Optional[str] = None,
        filename: Optional[str] = None,
        comments: Optional[str] = None,
        upload: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Order, SampleImage]:
        """Admin publishes a sample (``initial``) or revision image to the customer."""
        is_initial = kind == SampleType.INITIAL.value
        noun = "sample" if is_initial else "revision"
        self._require_admin(actor, f"Only admin can upload {noun}")
        order = self.get_order(order_id)
        default_name = f"{noun}.jpg"

        entries = []
        if files:
            for f in files:
                if _blank(f.get("url")):
                    raise ValidationError("Every file needs a url")
                entries.append((f["url"], f.get("filename") or f.get("name") or default_name))
        elif cloudinary_url:
            entries.append((cloudinary_url, filename or default_name))
        elif upload:
            stored = self.store_upload(upload, order.customer_id, "samples")
            entries.append((stored["url"], stored["filename"]))
        else:
            raise ValidationError(f"Please upload {noun} file(s) or provide Cloudinary URL(s)")

        for url, name in entries:
            order.sample_images.append(
                SampleImage(url=url, filename=name, type=kind, comments=comments or "", uploaded_at=datetime.utcnow())
            )
        order.status = OrderStatus.WAITING_FOR_APPROVAL.value if is_initial else OrderStatus.REVISION_READY.value
        if is_initial:
            note = create_notification(
                self.db,
                user_id=order.customer_id,
                type=NotificationType.SAMPLE_UPLOADED.value,
                title="Sample Uploaded",
                message=f"A sample has been uploaded for order {order.order_number}. Approve or Request Revision.",
                order_id=order.id,
                sender_role="admin",
            )
        else:
            note = create_notification(
                self.db,
                user_id=order.customer_id,
                type=NotificationType.REVISION_UPLOADED.value,
                title="Revision Uploaded",
                message=f"A revised sample has been uploaded for order {order.order_number}. Approve or Request further edits.",
                order_id=order.id,
                sender_role="admin",
            )
        self.db.commit()
        log.info("sample_uploaded", order_id=str(order.id), kind=kind, count=len(entries))

        self._emit_notifications([note])
        self._emit(order.customer_id, "orderUpdate", order_to_dict(order))
        return order, order.sample_images[-1]

    def submit_work(
        self,
        actor: User,
        order_id,
        *,
        pending_status: Optional[str] = None,
        pending_files: Optional[List[Dict[str, Any]]] = None,
        pending_report: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Order:
        """Assigned employee stages work for admin review. Nothing reaches the customer yet."""
        if actor.role != UserRole.EMPLOYEE.value:
            raise AuthorizationError("Only employees can submit work")
        order = self.get_order(order_id)
        if order.assigned_to_id != actor.id:
            raise AuthorizationError("You are not assigned to this order")
        status = pending_status or OrderStatus.WAITING_FOR_APPROVAL.value
        if status not in values(OrderStatus):
            raise ValidationError(f"Invalid status: {status}")
        now = datetime.utcnow()
        files = []
        for f in pending_files or []:
            if _blank(f.get("url")):
                raise ValidationError("Every file needs a url")
            files.append({
                "url": f["url"],
                "filename": f.get("filename") or f.get("name"),
                "uploadedAt": f.get("uploaded_at") or f.get("uploadedAt") or now.isoformat(),
                "comments": f.get("comments") or "",
            })

        pw = order.pending_work
        if pw is None:
            pw = PendingWork()
            order.pending_work = pw
        pw.state = PendingWorkState.PENDING.value
        pw.pending_status = status
        pw.pending_files = files
        pw.pending_report = pending_report or comments or ""
        pw.submitted_at = now
        pw.submitted_by_id = actor.id
        pw.submitted_by = actor
        pw.rejection_reason = ""

        notes = notify_admins(
            self.db,
            type=NotificationType.EMPLOYEE_WORK_PENDING.value,
            title="Employee Work Pending Approval",
            message=f"{actor.name} submitted work for order {order.order_number}. Please review.",
            order_id=order.id,
            sender_role="employee",
        )
        record_activity(self.db, user_id=actor.id, activity_type=ActivityType.REPORT_SUBMIT.value, order_id=order.id,
                        details={"files": len(files)})
        self.db.commit()
        log.info("employee_work_submitted", order_id=str(order.id), employee_id=str(actor.id), files=len(files))

        self._emit_notifications(notes)
        self._emit_admins("adminOrderUpdate", order_to_dict(order))
        return order

    def _pending(self, order: Order, verb: str) -> PendingWork:
        pw = order.pending_work
        if pw is None or not pw.has_pending_work:
            raise ValidationError(f"No pending work to {verb}")
        return pw

    def approve_work(self, actor: User, order_id) -> Order:
        self._require_admin(actor, "Only admin can approve work")
        order = self.get_order(order_id)
        pw = self._pending(order, "approve")

        for f in pw.pending_files or []:
            order.sample_images.append(
                SampleImage(
                    url=f["url"],
                    filename=f.get("filename"),
                    type=SampleType.INITIAL.value,
                    comments=f.get("comments") or pw.pending_report or "",
                    uploaded_at=_parse_ts(f.get("uploadedAt")),
                )
            )
        if pw.pending_status:
            order.status = pw.pending_status
        if pw.pending_report:
            order.report = pw.pending_report
        submitted_by_id = pw.submitted_by_id
        order.pending_work = None

        notes = [
            create_notification(
                self.db,
                user_id=order.customer_id,
                type=NotificationType.SAMPLE_UPLOADED.value,
                title="Sample Uploaded",
                message=f"A sample has been uploaded for order {order.order_number}. Approve or Request Revision.",
                order_id=order.id,
                sender_role="admin",
            )
        ]
        if submitted_by_id:
            notes.append(
                create_notification(
                    self.db,
                    user_id=submitted_by_id,
                    type=NotificationType.WORK_APPROVED.value,
                    title="Work Approved",
                    message=f"Your work for order {order.order_number} has been approved by admin.",
                    order_id=order.id,
                    sender_role="admin",
                )
            )
        self.db.commit()
        log.info("employee_work_approved", order_id=str(order.id), employee_id=str(submitted_by_id) if submitted_by_id else None)

        self._emit_notifications(notes)
        self._emit(order.customer_id, "orderUpdate", order_to_dict(order))
        return order

    def reject_work(self, actor: User, order_id, rejection_reason: Optional[str] = None) -> Order:
        """Keeps the submitted files so the employee sees what was rejected. The customer is not told."""
        self._require_admin(actor, "Only admin can reject work")
        order = self.get_order(order_id)
        pw = self._pending(order, "reject")
        reason = rejection_reason or "Work needs revision"

        pw.state = PendingWorkState.REJECTED.value
        pw.rejection_reason = reason
        notes = []
        if pw.submitted_by_id:
            notes.append(
                create_notification(
                    self.db,
                    user_id=pw.submitted_by_id,
                    type=NotificationType.WORK_REJECTED.value,
                    title="Work Rejected",
                    message=f"Your work for order {order.order_number} was rejected. Reason: {reason}",
                    order_id=order.id,
                    sender_role="admin",
                )
            )
        self.db.commit()
        log.info("employee_work_rejected", order_id=str(order.id), reason=reason)

        self._emit_notifications(notes)
        if pw.submitted_by_id:
            self._emit(pw.submitted_by_id, "orderUpdate", order_to_dict(order, pw.submitted_by, for_assignee=True))
        return order

    def create_revision(self, actor: User, order_id, comments: Optional[str] = None) -> Order:
        parent = self.get_order(order_id)
        self._require_owner(parent, actor)
        if parent.status != OrderStatus.COMPLETED.value:
            raise ValidationError("Only completed orders can be revised")

        existing = self.db.query(Order).filter(Order.parent_order_id == parent.id).count()
        number = existing + 1
        revision = Order(
            order_number=new_order_number(parent.order_type),
            customer_id=parent.customer_id,
            order_type=parent.order_type,
            required_employee_role=parent.order_type,
            status=OrderStatus.IN_PROGRESS.value,
            customer_approval_status=ApprovalStatus.PENDING.value,
            files=[dict(f) for f in parent.files or []],
            items=[dict(i) for i in parent.items or []],
            total_amount=parent.total_amount,
            parent_order_id=parent.id,
            is_revision=True,
            revision_number=number,
            revision_reason=comments or "Customer requested revision",
            notes=f"Revision {number} of order {parent.order_number}. Reason: {comments or 'Not specified'}",
        )
        for attr in REVISION_COPY_FIELDS:
            setattr(revision, attr, getattr(parent, attr))
        parent.status = OrderStatus.SUPERSEDED.value
        self.db.add(revision)
        self.db.flush()

        notes = notify_admins(
            self.db,
            type=NotificationType.REVISION_REQUESTED.value,
            title="Revision Order Created",
            message=f"Customer {actor.name} created revision order {revision.order_number} for {parent.order_number}",
            order_id=revision.id,
            sender_role="customer",
        )
        self.db.commit()
        log.info("revision_order_created", parent_id=str(parent.id), revision_id=str(revision.id), revision_number=number)

        self._emit_notifications(notes)
        self._emit_admins("adminOrderUpdate", order_to_dict(revision))
        self._emit(actor.id, "orderUpdate", order_to_dict(parent))
        return revision

    def delete_order(self, actor: User, order_id) -> None:
        order = self.get_order(order_id)
        if actor.role != UserRole.ADMIN.value and order.customer_id != actor.id:
            raise AuthorizationError("Not authorized to delete order")

        order_uuid, number, customer_id = order.id, order.order_number, order.customer_id
        files = list(order.files or [])
        assigned_id = order.assigned_to_id

        # rows that outlive the order keep a null reference
        self.db.query(Notification).filter(Notification.order_id == order_uuid).update(
            {Notification.order_id: None}, synchronize_session=False
        )
        self.db.query(ActivityLog).filter(ActivityLog.order_id == order_uuid).update(
            {ActivityLog.order_id: None}, synchronize_session=False
        )
        self.db.query(Order).filter(Order.parent_order_id == order_uuid).update(
            {Order.parent_order_id: None}, synchronize_session=False
        )
        order.assigned_to_id = None

        notes = [
            create_notification(
                self.db,
                user_id=customer_id,
                type=NotificationType.ORDER_DELETED.value,
                title="Order Deleted",
                message=f"Order {number} has been deleted.",
                sender_role=actor.role,
            )
        ]
        notes += notify_admins(
            self.db,
            type=NotificationType.ORDER_DELETED.value,
            title="Order Deleted",
            message=f"Order {number} was deleted by {actor.name}.",
            sender_role=actor.role,
            exclude=[customer_id],
        )
        self.db.delete(order)
        self.db.commit()
        self._expire_assigned_orders(assigned_id)
        log.info("order_deleted", order_id=str(order_uuid), order_number=number, actor_id=str(actor.id))

        self._delete_stored_files(files)
        self._emit_notifications(notes)
        event = {"orderId": str(order_uuid)}
        self._emit(customer_id, "orderDeleted", event)
        self._emit_admins("orderDeleted", event)

    def send_custom_email(self, actor: User, order_id, message: Optional[str], attachments: Optional[List[Dict[str, Any]]] = None) -> None:
        """Admin writes to the order's customer. Delivery is the whole point, so failure raises."""
        self._require_admin(actor, "Only admin can send emails")
        order = self.get_order(order_id)
        customer = order.customer
        if not customer or not customer.email:
            raise ValidationError("Customer has no email address")
        if _blank(message):
            raise ValidationError("message is required")
        html = emails.custom_order_email(customer, order, message)
        subject = f"Regarding your order {order.order_number}"
        try:
            sent = self.mailer.send(customer.email, subject, html, attachments or None)
        except Exception as e:
            log.error("custom_email_failed", order_id=str(order.id), error=str(e))
            raise ExternalServiceError("Failed to send email", error=str(e))
        if not sent:
            raise ExternalServiceError("Failed to send email")
        log.info("custom_email_sent", order_id=str(order.id), recipient=customer.email, attachments=len(attachments or []))
