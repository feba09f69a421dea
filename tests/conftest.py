import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="embrohub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["STORAGE_DIR"] = os.path.join(_tmp, "storage")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_PUSH"] = "false"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["ADMIN_EMAIL"] = ""
os.environ["JWT_SECRET"] = "test-secret"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from embrohub.auth.security import create_access_token, get_password_hash  # noqa: E402
from embrohub.db import Base, SessionLocal, engine  # noqa: E402
from embrohub.main import app  # noqa: E402
from embrohub.models.enums import UserRole  # noqa: E402
from embrohub.models.models import User  # noqa: E402
from embrohub.routes.files import get_storage  # noqa: E402
from embrohub.services.mailer import Mailer, get_mailer  # noqa: E402
from embrohub.services.order_lifecycle import OrderLifecycle  # noqa: E402
from embrohub.services.paypal import get_payment_gateway  # noqa: E402
from embrohub.services.push_hub import PushChannel, get_push  # noqa: E402
from embrohub.storage.provider import StorageProvider  # noqa: E402


class FakeMailer(Mailer):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, recipient, subject, html, attachments=None):
        if self.fail:
            return False
        self.sent.append({"to": recipient, "subject": subject, "html": html, "attachments": attachments})
        return True

    def subjects_for(self, recipient):
        return [m["subject"] for m in self.sent if m["to"] == recipient]


class FakePush(PushChannel):
    def __init__(self):
        self.events = []

    def emit(self, room, event, payload):
        self.events.append((room, event, payload))

    def events_for(self, user_id):
        return [e for room, e, _ in self.events if room == f"user-{user_id}"]


class FakeStorage(StorageProvider):
    name = "memory"
    prefix = "memory://"

    def __init__(self):
        self.blobs = {}
        self.deleted = []

    def save(self, key, stream, content_type=None):
        data = stream.read()
        key = key.lstrip("/")
        self.blobs[key] = data
        return {"url": f"{self.prefix}{key}", "key": key, "filename": key.rsplit("/", 1)[-1], "size": len(data), "format": None}

    def exists(self, key):
        return key.lstrip("/") in self.blobs

    def delete(self, key):
        self.deleted.append(key)
        self.blobs.pop(key, None)

    def key_for_url(self, url):
        if url and url.startswith(self.prefix):
            return url[len(self.prefix):]
        return None


class FakeGateway:
    """Stands in for PayPalGateway; tests set the status/amount the provider reports."""

    def __init__(self):
        self.status = "COMPLETED"
        self.amount = None
        self.currency = None
        self.created = []
        self.captured = []
        self.references = {}

    def create_order(self, amount, currency, reference, description, country_code):
        order_id = f"PP-{len(self.created) + 1}"
        self.references[order_id] = reference
        self.created.append({"order_id": order_id, "amount": amount, "currency": currency, "country_code": country_code})
        return {
            "order_id": order_id,
            "status": "CREATED",
            "approval_url": f"https://paypal.test/approve/{order_id}",
        }

    def get_order(self, order_id, country_code):
        return {
            "order_id": order_id,
            "status": self.status,
            "reference_id": self.references.get(order_id),
            "capture_id": f"CAP-{order_id}",
            "amount": self.amount,
            "currency": self.currency,
            "payer_id": "PAYER-1",
            "payer_email": "payer@paypal.test",
        }

    def capture_order(self, order_id, country_code):
        self.captured.append(order_id)
        return self.get_order(order_id, country_code)


@pytest.fixture()
def mailer():
    return FakeMailer()


@pytest.fixture()
def push():
    return FakePush()


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db, mailer, push, storage, gateway):
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_push] = lambda: push
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def lifecycle(db, mailer, push, storage):
    return OrderLifecycle(db, mailer, push, storage)


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.CUSTOMER.value, *, name=None, employee_role=None, country="Switzerland", password="secret123", **extra):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"{role.title()} {n}",
            username=extra.pop("username", f"{role}{n}"),
            email=extra.pop("email", f"{role}{n}@embro-shop.com"),
            password_hash=get_password_hash(password),
            role=role,
            employee_role=employee_role,
            country=country,
            is_active=extra.pop("is_active", True),
            **extra,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(UserRole.ADMIN.value, name="Admin")


@pytest.fixture()
def customer(make_user):
    return make_user(UserRole.CUSTOMER.value, name="Clara Customer", street="Bahnhofstrasse 1", city="Zurich", zip_code="8001")


@pytest.fixture()
def employee(make_user):
    return make_user(UserRole.EMPLOYEE.value, name="Vera Vector", employee_role="vector")


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}


VECTOR_ORDER = {
    "orderType": "vector",
    "designName": "Club Logo",
    "fileFormat": "AI",
    "files": [{"url": "https://cdn.embro-shop.com/logo.png", "filename": "logo.png", "size": 1024}],
}

PATCH_ORDER = {
    "orderType": "patches",
    "patchDesignName": "Team Badge",
    "patchStyle": "Woven Patches",
    "patchAmount": 50,
    "patchUnit": "inches",
    "patchLength": 3,
    "patchWidth": 2,
    "patchBackingStyle": "Iron On",
    "patchQuantity": 50,
    "patchAddress": "Bahnhofstrasse 1, 8001 Zurich",
    "files": [{"url": "https://cdn.embro-shop.com/badge.png", "filename": "badge.png"}],
}


def vector_data(**overrides):
    data = {
        "order_type": "vector",
        "design_name": "Club Logo",
        "file_format": "AI",
        "files": [{"url": "https://cdn.embro-shop.com/logo.png", "filename": "logo.png"}],
    }
    data.update(overrides)
    return data
