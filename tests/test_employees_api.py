from embrohub.models.enums import UserRole

from conftest import VECTOR_ORDER, auth


def test_create_employee_sends_welcome(client, admin, mailer):
    r = client.post(
        "/employees",
        json={"name": "Dina Digitizer", "email": "Dina@Embro-Shop.com", "employeeRole": "digitizing"},
        headers=auth(admin),
    )
    assert r.status_code == 201, r.text
    employee = r.json()["employee"]
    assert employee["role"] == "employee"
    assert employee["employeeRole"] == "digitizing"
    assert employee["email"] == "dina@embro-shop.com"
    assert employee["username"] == "dina"
    assert mailer.subjects_for("dina@embro-shop.com")


def test_create_employee_validates_role_and_email(client, admin, customer):
    r = client.post("/employees", json={"name": "X", "email": "x@embro-shop.com", "employeeRole": "sewing"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid employeeRole. Allowed: patches, vector, digitizing"

    r = client.post("/employees", json={"name": "X", "email": customer.email, "employeeRole": "vector"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email already exists"


def test_employee_endpoints_are_admin_only(client, employee):
    assert client.get("/employees", headers=auth(employee)).status_code == 403


def test_list_and_update_employee(client, admin, employee):
    body = client.get("/employees", headers=auth(admin)).json()
    assert body["count"] == 1

    r = client.put(f"/employees/{employee.id}", json={"employeeRole": "patches", "isActive": False}, headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["employee"]["employeeRole"] == "patches"
    assert r.json()["employee"]["isActive"] is False


def test_update_employee_email_in_use(client, admin, employee, customer):
    r = client.put(f"/employees/{employee.id}", json={"email": customer.email}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["message"] == "Email already in use"


def test_update_non_employee_is_404(client, admin, customer):
    assert client.put(f"/employees/{customer.id}", json={"name": "Nope"}, headers=auth(admin)).status_code == 404


def test_delete_employee_detaches_orders(client, admin, employee, customer):
    orders = [client.post("/orders", json=VECTOR_ORDER, headers=auth(customer)).json()["order"] for _ in range(2)]
    for o in orders:
        client.patch(f"/orders/assign/{o['id']}", json={"employeeId": str(employee.id)}, headers=auth(admin))
    client.post(
        f"/orders/{orders[0]['id']}/employee-submit",
        json={"pendingFiles": [{"url": "https://cdn.embro-shop.com/p.png"}]},
        headers=auth(employee),
    )

    r = client.delete(f"/employees/{employee.id}", headers=auth(admin))
    assert r.status_code == 200, r.text
    assert r.json()["detachedOrders"] == 2

    for o in orders:
        current = client.get(f"/orders/{o['id']}", headers=auth(admin)).json()["order"]
        assert current["assignedTo"] is None
    assert client.get("/employees", headers=auth(admin)).json()["count"] == 0


def test_activity_log_and_summary(client, admin, employee):
    r = client.post("/activity/log", json={"activityType": "heartbeat"}, headers=auth(employee))
    assert r.status_code == 200

    r = client.post("/activity/log", json={"activityType": "dancing"}, headers=auth(employee))
    assert r.status_code == 400

    logs = client.get(f"/activity/employee/{employee.id}", headers=auth(admin)).json()["logs"]
    assert [entry["activityType"] for entry in logs] == ["heartbeat"]

    summary = client.get("/activity/summary", headers=auth(admin)).json()["summary"]
    assert summary[0]["id"] == str(employee.id)
    assert summary[0]["isOnline"] is True
    assert summary[0]["lastActivity"] == "heartbeat"


def test_employee_analytics(client, admin, employee, customer):
    order = client.post("/orders", json=VECTOR_ORDER, headers=auth(customer)).json()["order"]
    client.patch(f"/orders/assign/{order['id']}", json={"employeeId": str(employee.id)}, headers=auth(admin))
    client.put(f"/orders/{order['id']}", json={"status": "Completed"}, headers=auth(employee))

    body = client.get("/orders/employee-analytics", headers=auth(admin)).json()
    row = body["analytics"][0]
    assert row["employee"]["id"] == str(employee.id)
    assert row["totalAssigned"] == 1
    assert row["completed"] == 1
    assert body["unassignedCount"] == 0


def test_list_users_filters_by_specialty(client, admin, employee, customer, make_user):
    make_user(UserRole.EMPLOYEE.value, employee_role="patches")
    body = client.get("/users?role=vector", headers=auth(admin)).json()
    assert [u["id"] for u in body["users"]] == [str(employee.id)]
    assert body["total"] == 1
