import bcrypt
import jwt

from embrohub.config import settings
from embrohub.models.enums import UserRole

from conftest import auth


REGISTRATION = {
    "name": "Hans Muster",
    "username": "HansM",
    "email": "hans@embro-shop.com",
    "password": "secret123",
    "company": "Muster AG",
    "country": "Germany",
    "street": "Hauptstrasse 5",
    "city": "Berlin",
    "state": "BE",
    "zipCode": "10115",
}


def test_register_returns_token_and_customer_number(client):
    r = client.post("/auth/register", json=REGISTRATION)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["user"]["role"] == "customer"
    assert body["user"]["username"] == "hansm"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"}).json()["user"]
    assert me["customerNumber"] == "GER-0001"
    assert me["address"]["zipCode"] == "10115"

    second = client.post("/auth/register", json={**REGISTRATION, "username": "other", "email": "other@embro-shop.com"})
    assert second.status_code == 201
    token = second.json()["token"]
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["user"]["customerNumber"] == "GER-0002"


def test_register_rejects_duplicates_and_short_passwords(client):
    client.post("/auth/register", json=REGISTRATION)

    r = client.post("/auth/register", json={**REGISTRATION, "username": "someone"})
    assert r.status_code == 400
    assert r.json()["message"] == "Email already exists"

    r = client.post("/auth/register", json={**REGISTRATION, "email": "new@embro-shop.com"})
    assert r.json()["message"] == "Username already exists"

    r = client.post("/auth/register", json={**REGISTRATION, "username": "x", "email": "x@embro-shop.com", "password": "123"})
    assert r.status_code == 400
    assert "at least 6" in r.json()["message"]


def test_register_requires_every_field(client):
    r = client.post("/auth/register", json={**REGISTRATION, "company": "  "})
    assert r.status_code == 400
    assert r.json()["message"] == "Please fill all required fields"


def test_login_by_email_or_username(client, customer):
    for identifier in (customer.email, customer.username.upper()):
        r = client.post("/auth/login", json={"identifier": identifier, "password": "secret123"})
        assert r.status_code == 200, r.text
        assert r.json()["user"]["id"] == str(customer.id)


def test_login_failures(client, make_user):
    make_user(UserRole.CUSTOMER.value, username="sleepy", is_active=False)

    r = client.post("/auth/login", json={"identifier": "nobody", "password": "secret123"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Invalid credentials"}

    r = client.post("/auth/login", json={"identifier": "sleepy", "password": "secret123"})
    assert r.status_code == 403
    assert r.json()["message"] == "Account is inactive"


def test_login_accepts_legacy_bcrypt_hash(client, db, customer):
    customer.password_hash = bcrypt.hashpw(b"oldsecret", bcrypt.gensalt()).decode()
    db.commit()
    r = client.post("/auth/login", json={"identifier": customer.email, "password": "oldsecret"})
    assert r.status_code == 200


def test_token_checks(client, customer, db):
    assert client.get("/auth/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401

    token = jwt.encode({"sub": str(customer.id), "exp": 1}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    r = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["message"] == "Token expired"

    customer.is_active = False
    db.commit()
    assert client.get("/auth/me", headers=auth(customer)).status_code == 403


def test_profile_and_password(client, customer, make_user):
    other = make_user(UserRole.CUSTOMER.value)
    r = client.put("/users/profile", json={"city": "Basel", "invoicingEmail": "billing@embro-shop.com"}, headers=auth(customer))
    assert r.status_code == 200
    assert r.json()["user"]["address"]["city"] == "Basel"

    r = client.put("/users/profile", json={"email": other.email}, headers=auth(customer))
    assert r.status_code == 400

    r = client.put("/users/password", json={"currentPassword": "wrong", "newPassword": "newsecret"}, headers=auth(customer))
    assert r.json()["message"] == "Current password is incorrect"

    r = client.put("/users/password", json={"currentPassword": "secret123", "newPassword": "newsecret"}, headers=auth(customer))
    assert r.status_code == 200
    assert client.post("/auth/login", json={"identifier": customer.email, "password": "newsecret"}).status_code == 200


def test_admin_user_management(client, admin, customer, employee):
    assert client.get("/users", headers=auth(customer)).status_code == 403

    r = client.put(f"/users/{customer.id}", json={"adminNotes": "VIP", "assignCustomerNumber": True}, headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["user"]["adminNotes"] == "VIP"
    assert r.json()["user"]["customerNumber"] == "SWI-0001"

    r = client.put(f"/users/{customer.id}", json={"role": "employee"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["message"] == "employeeRole is required for employees"


def test_impersonation(client, admin, customer, employee):
    r = client.post(f"/users/{customer.id}/impersonate", headers=auth(admin))
    assert r.status_code == 200
    token = r.json()["token"]
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    assert claims["impersonatedBy"] == str(admin.id)
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["user"]
    assert me["id"] == str(customer.id)

    r = client.post(f"/users/{employee.id}/impersonate", headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["message"] == "Can only impersonate customers"


def test_logout_records_activity(client, admin, employee):
    r = client.post("/auth/logout?session_minutes=42", headers=auth(employee))
    assert r.status_code == 200
    logs = client.get(f"/activity/employee/{employee.id}", headers=auth(admin)).json()["logs"]
    assert logs[0]["activityType"] == "logout"
    assert logs[0]["sessionDuration"] == 42
