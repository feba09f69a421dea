import pytest

from embrohub.exceptions import AuthorizationError, NotFoundError, ValidationError
from embrohub.models.enums import OrderStatus, NotificationType, UserRole
from embrohub.models.models import Notification, Order

from conftest import vector_data


def _notifications(db, user, type_=None):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if type_:
        q = q.filter(Notification.type == type_)
    return q.all()


def test_create_order_prices_and_notifies(db, lifecycle, customer, admin, mailer, push):
    order = lifecycle.create_order(customer, vector_data())

    assert order.order_number.startswith("VEC-")
    assert order.status == OrderStatus.IN_PROGRESS.value
    assert order.required_employee_role == "vector"
    assert order.items == [{"description": "Club Logo (AI)", "quantity": 1, "price": 50.0}]
    assert order.total_amount == 50.0

    assert len(_notifications(db, customer, NotificationType.ORDER_CREATED.value)) == 1
    assert len(_notifications(db, admin, NotificationType.ORDER_CREATED.value)) == 1
    assert mailer.subjects_for(customer.email)
    assert mailer.subjects_for(admin.email)
    assert "newOrder" in push.events_for(admin.id)


def test_create_order_requires_files(lifecycle, customer):
    with pytest.raises(ValidationError, match="at least one file"):
        lifecycle.create_order(customer, vector_data(files=[]))


def test_create_patch_order_names_missing_address(lifecycle, customer):
    data = {
        "order_type": "patches",
        "patch_design_name": "Badge",
        "patch_style": "Woven Patches",
        "patch_amount": 10,
        "patch_unit": "inches",
        "patch_length": 3,
        "patch_width": 2,
        "patch_backing_style": "Iron On",
        "patch_quantity": 10,
        "files": [{"url": "https://cdn.embro-shop.com/badge.png"}],
    }
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_order(customer, data)
    assert "patchAddress" in exc.value.message


def test_create_order_rejects_unknown_choice(lifecycle, customer):
    with pytest.raises(ValidationError, match="fileFormat"):
        lifecycle.create_order(customer, vector_data(file_format="PNG"))


def test_only_customers_create_orders(lifecycle, admin):
    with pytest.raises(AuthorizationError):
        lifecycle.create_order(admin, vector_data())


def test_email_failure_does_not_undo_order(db, lifecycle, customer, mailer):
    mailer.fail = True
    order = lifecycle.create_order(customer, vector_data())
    assert db.get(Order, order.id) is not None


def test_order_type_is_immutable(lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())
    with pytest.raises(ValidationError, match="orderType"):
        lifecycle.update_order(admin, order.id, {"order_type": "patches"})
    with pytest.raises(ValidationError, match="orderType"):
        order.order_type = "digitizing"


def test_reassign_keeps_back_references_consistent(db, lifecycle, customer, admin, make_user):
    a = make_user(UserRole.EMPLOYEE.value, employee_role="vector")
    b = make_user(UserRole.EMPLOYEE.value, employee_role="vector")
    order = lifecycle.create_order(customer, vector_data())

    lifecycle.assign(admin, order.id, str(a.id))
    assert [o.id for o in a.assigned_orders] == [order.id]

    _, previous = lifecycle.assign(admin, order.id, str(b.id))
    assert previous == a.id
    assert order.assigned_to_id == b.id
    assert a.assigned_orders == []
    assert [o.id for o in b.assigned_orders] == [order.id]
    assert len(_notifications(db, a, NotificationType.ORDER_REASSIGNED.value)) == 1
    assigned = _notifications(db, b, NotificationType.ORDER_ASSIGNED.value)
    assert assigned[0].previous_assigned_employee_id == a.id


def test_assign_rejects_non_employee(lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())
    with pytest.raises(ValidationError, match="Invalid employee"):
        lifecycle.assign(admin, order.id, str(customer.id))


def test_bulk_assign_reports_failures(lifecycle, customer, admin, employee):
    first = lifecycle.create_order(customer, vector_data())
    second = lifecycle.create_order(customer, vector_data(design_name="Second"))
    result = lifecycle.bulk_assign(admin, [str(first.id), "not-a-uuid", str(second.id)], str(employee.id))

    assert result["assignedCount"] == 2
    assert result["failed"] == ["not-a-uuid"]
    assert {o.id for o in employee.assigned_orders} == {first.id, second.id}


def test_status_notification_only_on_change(db, lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())

    lifecycle.update_order(admin, order.id, {"status": OrderStatus.IN_PROGRESS.value, "report": "checked"})
    assert _notifications(db, customer, NotificationType.ORDER_STATUS_CHANGED.value) == []

    lifecycle.update_order(admin, order.id, {"status": OrderStatus.COMPLETED.value})
    assert len(_notifications(db, customer, NotificationType.ORDER_STATUS_CHANGED.value)) == 1
    assert order.completed_count == 1


def test_tracking_number_notifies_patch_customers(db, lifecycle, customer, admin, mailer):
    order = lifecycle.create_order(customer, {
        "order_type": "patches",
        "patch_design_name": "Badge",
        "patch_style": "Woven Patches",
        "patch_amount": 10,
        "patch_unit": "inches",
        "patch_length": 3,
        "patch_width": 2,
        "patch_backing_style": "Iron On",
        "patch_quantity": 10,
        "patch_address": "Main St 1",
        "files": [{"url": "https://cdn.embro-shop.com/badge.png"}],
    })
    lifecycle.update_order(admin, order.id, {"tracking_number": "CH123"})
    notes = _notifications(db, customer, NotificationType.TRACKING_NUMBER_ADDED.value)
    assert len(notes) == 1
    assert "CH123" in notes[0].message


def test_customer_can_only_touch_notes(lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())
    lifecycle.update_order(customer, order.id, {"status": OrderStatus.COMPLETED.value, "notes": "rush please"})
    assert order.status == OrderStatus.IN_PROGRESS.value
    assert order.notes == "rush please"


def test_unassigned_employee_cannot_update(lifecycle, customer, employee):
    order = lifecycle.create_order(customer, vector_data())
    with pytest.raises(AuthorizationError):
        lifecycle.update_order(employee, order.id, {"status": OrderStatus.COMPLETED.value})


def test_revision_forks_completed_order(db, lifecycle, customer, admin):
    parent = lifecycle.create_order(customer, vector_data())
    lifecycle.update_order(admin, parent.id, {"status": OrderStatus.COMPLETED.value})

    revision = lifecycle.create_revision(customer, parent.id, "make the red darker")
    assert parent.status == OrderStatus.SUPERSEDED.value
    assert revision.parent_order_id == parent.id
    assert revision.is_revision is True
    assert revision.revision_number == 1
    assert revision.status == OrderStatus.IN_PROGRESS.value
    assert revision.order_type == parent.order_type
    assert revision.design_name == parent.design_name
    assert revision.files == parent.files
    assert revision.order_number != parent.order_number


def test_revision_requires_completed_parent(lifecycle, customer):
    parent = lifecycle.create_order(customer, vector_data())
    with pytest.raises(ValidationError, match="completed"):
        lifecycle.create_revision(customer, parent.id)


def test_revision_only_by_owner(lifecycle, customer, admin, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    parent = lifecycle.create_order(customer, vector_data())
    lifecycle.update_order(admin, parent.id, {"status": OrderStatus.COMPLETED.value})
    with pytest.raises(AuthorizationError):
        lifecycle.create_revision(other, parent.id)


def _submit(lifecycle, admin, customer, employee):
    order = lifecycle.create_order(customer, vector_data())
    lifecycle.assign(admin, order.id, str(employee.id))
    lifecycle.submit_work(
        employee,
        order.id,
        pending_files=[{"url": "https://cdn.embro-shop.com/proof.png", "filename": "proof.png"}],
        pending_report="first proof",
    )
    return order


def test_submitted_work_is_hidden_from_customer(db, lifecycle, customer, admin, employee):
    order = _submit(lifecycle, admin, customer, employee)

    assert order.pending_work.has_pending_work
    assert order.sample_images == []
    assert _notifications(db, customer, NotificationType.SAMPLE_UPLOADED.value) == []
    assert len(_notifications(db, admin, NotificationType.EMPLOYEE_WORK_PENDING.value)) == 1


def test_submit_requires_assignment(lifecycle, customer, employee):
    order = lifecycle.create_order(customer, vector_data())
    with pytest.raises(AuthorizationError):
        lifecycle.submit_work(employee, order.id, pending_files=[{"url": "https://x/y.png"}])


def test_approve_work_publishes_to_customer(db, lifecycle, customer, admin, employee):
    order = _submit(lifecycle, admin, customer, employee)
    lifecycle.approve_work(admin, order.id)

    assert order.pending_work is None
    assert order.status == OrderStatus.WAITING_FOR_APPROVAL.value
    assert [i.url for i in order.sample_images] == ["https://cdn.embro-shop.com/proof.png"]
    assert order.report == "first proof"
    assert len(_notifications(db, customer, NotificationType.SAMPLE_UPLOADED.value)) == 1
    assert len(_notifications(db, employee, NotificationType.WORK_APPROVED.value)) == 1

    with pytest.raises(ValidationError, match="No pending work"):
        lifecycle.approve_work(admin, order.id)


def test_reject_work_notifies_only_the_employee(db, lifecycle, customer, admin, employee):
    order = _submit(lifecycle, admin, customer, employee)
    before = len(_notifications(db, customer))

    lifecycle.reject_work(admin, order.id, "blurry image")

    pw = order.pending_work
    assert pw.was_rejected and not pw.has_pending_work
    assert pw.pending_files[0]["url"] == "https://cdn.embro-shop.com/proof.png"
    assert pw.rejection_reason == "blurry image"
    assert len(_notifications(db, customer)) == before
    rejected = _notifications(db, employee, NotificationType.WORK_REJECTED.value)
    assert len(rejected) == 1
    assert "blurry image" in rejected[0].message

    with pytest.raises(ValidationError):
        lifecycle.approve_work(admin, order.id)


def test_rejection_push_hides_customer_details(db, lifecycle, customer, admin, employee, push):
    order = _submit(lifecycle, admin, customer, employee)
    order.patch_address = "Bahnhofstrasse 1, Zurich"
    db.commit()

    lifecycle.reject_work(admin, order.id, "blurry image")

    payloads = [p for room, e, p in push.events if room == f"user-{employee.id}" and e == "orderUpdate"]
    assert len(payloads) == 1
    assert "patchAddress" not in payloads[0]
    assert payloads[0]["customer"] is None
    assert payloads[0]["employeePendingWork"]["rejectionReason"] == "blurry image"


def test_sample_upload_moves_to_waiting(db, lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())
    _, image = lifecycle.upload_sample(admin, order.id, cloudinary_url="https://cdn.embro-shop.com/s1.png")

    assert image.type == "initial"
    assert order.status == OrderStatus.WAITING_FOR_APPROVAL.value
    assert len(_notifications(db, customer, NotificationType.SAMPLE_UPLOADED.value)) == 1

    lifecycle.upload_sample(admin, order.id, kind="revision", cloudinary_url="https://cdn.embro-shop.com/s2.png")
    assert order.status == OrderStatus.REVISION_READY.value


def test_sample_upload_stores_attached_file(lifecycle, customer, admin, storage):
    order = lifecycle.create_order(customer, vector_data())
    _, image = lifecycle.upload_sample(
        admin, order.id, upload={"filename": "proof.png", "content": b"png", "content_type": "image/png"}
    )
    assert image.url.startswith("memory://samples/")
    assert list(storage.blobs.values()) == [b"png"]


def test_revision_request_appends_comment(db, lifecycle, customer, admin):
    order = lifecycle.create_order(customer, vector_data())
    lifecycle.request_revision(customer, order.id, "thicker outline")
    assert order.customer_approval_status == "revision_requested"
    assert "Revision Request: thicker outline" in order.notes
    assert len(_notifications(db, admin, NotificationType.REVISION_REQUESTED.value)) == 1


def test_delete_order_keeps_notifications(db, lifecycle, customer, admin, storage):
    order = lifecycle.create_order(
        customer, vector_data(), uploads=[{"filename": "a.ai", "content": b"vec", "content_type": "application/postscript"}]
    )
    order_id = order.id
    lifecycle.delete_order(customer, order_id)

    assert db.get(Order, order_id) is None
    deleted = _notifications(db, customer, NotificationType.ORDER_DELETED.value)
    assert len(deleted) == 1
    assert deleted[0].order_id is None
    db.expire_all()
    created = _notifications(db, customer, NotificationType.ORDER_CREATED.value)
    assert created[0].order_id is None
    assert storage.deleted


def test_delete_order_by_stranger_is_forbidden(lifecycle, customer, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    order = lifecycle.create_order(customer, vector_data())
    with pytest.raises(AuthorizationError):
        lifecycle.delete_order(other, order.id)


def test_unknown_order_is_not_found(lifecycle, admin):
    with pytest.raises(NotFoundError):
        lifecycle.get_order("00000000-0000-0000-0000-000000000000")
