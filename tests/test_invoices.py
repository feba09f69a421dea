import pytest

from embrohub.models.enums import NotificationType, UserRole
from embrohub.models.models import Notification

from conftest import VECTOR_ORDER, auth


@pytest.fixture()
def order(client, customer):
    r = client.post("/orders", json=VECTOR_ORDER, headers=auth(customer))
    return r.json()["order"]


@pytest.fixture()
def invoice(client, admin, order):
    r = client.post("/invoices", json={"orderIds": [order["id"]], "tax": 5}, headers=auth(admin))
    assert r.status_code == 201, r.text
    return r.json()["invoice"]


def _start_payment(client, customer, invoice):
    r = client.post("/payments/create-order", json={"invoiceId": invoice["id"]}, headers=auth(customer))
    assert r.status_code == 200, r.text
    return r.json()["paypalOrderId"]


def test_create_invoice_totals_and_currency(client, customer, invoice, order, mailer):
    assert invoice["subtotal"] == 50.0
    assert invoice["tax"] == 5.0
    assert invoice["total"] == 55.0
    assert invoice["currency"] == "CHF"
    assert invoice["paymentStatus"] == "unpaid"
    assert invoice["invoiceSent"] is True
    assert [o["id"] for o in invoice["orders"]] == [order["id"]]
    assert mailer.subjects_for(customer.email)

    billed = client.get(f"/orders/{order['id']}", headers=auth(customer)).json()["order"]
    assert billed["hasInvoice"] is True
    assert billed["invoiceId"] == invoice["id"]


def test_invoice_requires_single_customer(client, admin, order, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    theirs = client.post("/orders", json=VECTOR_ORDER, headers=auth(other)).json()["order"]
    r = client.post("/invoices", json={"orderIds": [order["id"], theirs["id"]]}, headers=auth(admin))
    assert r.status_code == 400


def test_order_cannot_be_invoiced_twice(client, admin, order, invoice):
    r = client.post("/invoices", json={"orderId": order["id"]}, headers=auth(admin))
    assert r.status_code == 400
    assert "already invoiced" in r.json()["message"]


def test_only_admin_creates_invoices(client, customer, order):
    r = client.post("/invoices", json={"orderIds": [order["id"]]}, headers=auth(customer))
    assert r.status_code == 403


def test_customer_lists_own_invoices(client, customer, invoice, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    assert [i["id"] for i in client.get("/invoices/my", headers=auth(customer)).json()["invoices"]] == [invoice["id"]]
    assert client.get("/invoices/my", headers=auth(other)).json()["invoices"] == []
    assert client.get(f"/invoices/{invoice['id']}", headers=auth(other)).status_code == 403


def test_provider_status_not_completed_leaves_invoice_unpaid(client, customer, invoice, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    gateway.status = "APPROVED"
    gateway.amount, gateway.currency = 55.0, "CHF"

    r = client.post(f"/invoices/{invoice['id']}/verify", json={"transactionId": paypal_id}, headers=auth(customer))
    assert r.status_code == 400
    assert r.json()["message"] == "Payment not completed"

    status = client.get(f"/payments/status/{invoice['id']}", headers=auth(customer)).json()
    assert status["paymentStatus"] == "unpaid"


def test_amount_mismatch_is_rejected(client, customer, invoice, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 50.0, "CHF"
    r = client.post(f"/invoices/{invoice['id']}/verify", json={"transactionId": paypal_id}, headers=auth(customer))
    assert r.status_code == 400
    assert "does not match" in r.json()["message"]


def test_currency_mismatch_is_rejected(client, customer, invoice, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 55.0, "USD"
    r = client.post(f"/invoices/{invoice['id']}/verify", json={"transactionId": paypal_id}, headers=auth(customer))
    assert r.status_code == 400


def test_capture_marks_invoice_paid(db, client, customer, admin, invoice, order, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    assert gateway.created[0]["country_code"] == "CH"
    gateway.amount, gateway.currency = 55.0, "CHF"

    r = client.post(
        "/payments/capture-order",
        json={"invoiceId": invoice["id"], "paypalOrderId": paypal_id},
        headers=auth(customer),
    )
    assert r.status_code == 200, r.text
    paid = r.json()["invoice"]
    assert paid["paymentStatus"] == "paid"
    assert paid["paymentDetails"]["transactionId"] == f"CAP-{paypal_id}"
    assert gateway.captured == [paypal_id]

    billed = client.get(f"/orders/{order['id']}", headers=auth(customer)).json()["order"]
    assert billed["invoiceStatus"] == "paid"
    notes = db.query(Notification).filter(
        Notification.user_id == admin.id, Notification.type == NotificationType.INVOICE_PAID.value
    ).all()
    assert len(notes) == 1

    again = client.post("/payments/create-order", json={"invoiceId": invoice["id"]}, headers=auth(customer))
    assert again.status_code == 400
    assert again.json()["message"] == "This invoice has already been paid"


def test_foreign_transaction_is_rejected(client, customer, invoice, gateway):
    _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 55.0, "CHF"
    r = client.post(f"/invoices/{invoice['id']}/verify", json={"transactionId": "PP-999"}, headers=auth(customer))
    assert r.status_code == 400
    assert r.json()["message"] == "Transaction does not belong to this invoice"


def test_other_customer_cannot_pay(client, invoice, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    r = client.post("/payments/create-order", json={"invoiceId": invoice["id"]}, headers=auth(other))
    assert r.status_code == 403


def test_public_invoice_and_pay(client, customer, invoice, gateway):
    r = client.get(f"/invoices/public/{invoice['id']}")
    assert r.status_code == 200
    public = r.json()["invoice"]
    assert public["designName"] == "Club Logo"
    assert "customer" not in public

    paypal_id = _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 55.0, "CHF"
    r = client.post(f"/invoices/public/pay/{invoice['id']}", json={"transactionId": paypal_id})
    assert r.status_code == 200
    assert r.json()["invoice"]["status"] == "paid"


def _second_invoice(client, admin, customer):
    order = client.post("/orders", json=VECTOR_ORDER, headers=auth(customer)).json()["order"]
    r = client.post("/invoices", json={"orderIds": [order["id"]], "tax": 5}, headers=auth(admin))
    assert r.status_code == 201, r.text
    return r.json()["invoice"]


def test_one_paypal_order_settles_only_one_invoice(client, admin, customer, invoice, gateway):
    other = _second_invoice(client, admin, customer)
    assert other["total"] == invoice["total"]

    paypal_id = _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 55.0, "CHF"
    assert client.post(f"/invoices/public/pay/{invoice['id']}", json={"transactionId": paypal_id}).status_code == 200

    for txn in (paypal_id, f"CAP-{paypal_id}"):
        r = client.post(f"/invoices/public/pay/{other['id']}", json={"transactionId": txn})
        assert r.status_code == 400
        assert r.json()["message"] == "Transaction does not belong to this invoice"
    status = client.get(f"/payments/status/{other['id']}", headers=auth(customer)).json()
    assert status["paymentStatus"] == "unpaid"


def test_paypal_order_for_another_reference_is_rejected(client, customer, invoice, gateway):
    gateway.references["PP-77"] = "some-other-invoice"
    gateway.amount, gateway.currency = 55.0, "CHF"
    r = client.post(f"/invoices/{invoice['id']}/verify", json={"transactionId": "PP-77"}, headers=auth(customer))
    assert r.status_code == 400
    assert r.json()["message"] == "Transaction does not belong to this invoice"
    status = client.get(f"/payments/status/{invoice['id']}", headers=auth(customer)).json()
    assert status["paymentStatus"] == "unpaid"


def test_webhook_settles_invoice(client, customer, invoice, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    gateway.amount, gateway.currency = 55.0, "CHF"
    event = {
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {"id": "CAP-1", "supplementary_data": {"related_ids": {"order_id": paypal_id}}},
    }
    r = client.post("/webhooks/paypal", json=event)
    assert r.json() == {"success": True, "received": True, "processed": True}
    status = client.get(f"/payments/status/{invoice['id']}", headers=auth(customer)).json()
    assert status["paymentStatus"] == "paid"


def test_webhook_acknowledges_unusable_events(client, customer, invoice, gateway):
    paypal_id = _start_payment(client, customer, invoice)
    gateway.status = "VOIDED"
    event = {
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {"supplementary_data": {"related_ids": {"order_id": paypal_id}}},
    }
    r = client.post("/webhooks/paypal", json=event)
    assert r.status_code == 200
    assert r.json()["processed"] is False

    r = client.post("/webhooks/paypal", json={"event_type": "CHECKOUT.ORDER.APPROVED"})
    assert r.json()["processed"] is False


def test_edit_and_cancel_unpaid_invoice(client, admin, order, invoice):
    r = client.put(
        f"/invoices/{invoice['id']}",
        json={"items": [{"description": "Logo vectorizing", "quantity": 2, "price": 30}], "tax": 0},
        headers=auth(admin),
    )
    assert r.status_code == 200
    assert r.json()["invoice"]["total"] == 60.0

    r = client.post(f"/invoices/{invoice['id']}/cancel", headers=auth(admin))
    assert r.json()["invoice"]["paymentStatus"] == "cancelled"

    r = client.post("/invoices", json={"orderIds": [order["id"]]}, headers=auth(admin))
    assert r.status_code == 201


def test_resend_failure_is_502(client, admin, invoice, mailer):
    mailer.fail = True
    r = client.post(f"/invoices/{invoice['id']}/send", headers=auth(admin))
    assert r.status_code == 502
