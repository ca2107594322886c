import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="retail_hub_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["ADMIN_EMAIL"] = "owner@shop.test"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from main import app  # noqa: E402
from models import User  # noqa: E402
from utils import email_sender, notifications, sessions  # noqa: E402
from utils.firebase import PhoneTokenError, get_phone_verifier  # noqa: E402


PUSH_SENDERS = (
    "send_new_user_registration_alert",
    "send_welcome_notification",
    "send_price_drop_alert",
    "send_back_in_stock_alert",
    "send_abandoned_cart_reminder",
)
EMAIL_SENDERS = (
    "send_registration_otp",
    "send_resend_otp",
    "send_welcome_email",
    "send_contact_message",
)


@pytest.fixture(autouse=True)
def clean_db():
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    sessions._MEM.clear()
    yield


@pytest.fixture
def db():
    s = database.SessionLocal()
    try:
        yield s
    finally:
        s.close()


class Outbox:
    """Records every email/push instead of delivering it."""

    def __init__(self):
        self.emails = []
        self.pushes = []
        self.push_result = {"success": True}
        self.email_result = {"success": True, "message": "Email sent"}

    def of(self, kind):
        return [p for p in self.pushes if p["kind"] == kind]

    def last_code(self, to_email):
        codes = [e["code"] for e in self.emails if e.get("to_email") == to_email and "code" in e]
        return codes[-1] if codes else None


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    box = Outbox()

    def fake_email(kind):
        def _send(db, **kwargs):
            box.emails.append({"kind": kind, **kwargs})
            return dict(box.email_result)

        return _send

    def fake_push(kind):
        def _send(db, *args, **kwargs):
            box.pushes.append({"kind": kind, "args": args, "kwargs": kwargs})
            return dict(box.push_result)

        return _send

    for name in EMAIL_SENDERS:
        monkeypatch.setattr(email_sender, name, fake_email(name))
    for name in PUSH_SENDERS:
        monkeypatch.setattr(notifications, name, fake_push(name))
    return box


def fake_verifier(token):
    # "fb|<phone>|<uid>" decodes to that phone/uid; anything else is rejected.
    parts = (token or "").split("|")
    if len(parts) != 3 or parts[0] != "fb":
        raise PhoneTokenError("invalid token")
    return {"phone_number": parts[1], "uid": parts[2]}


@pytest.fixture
def client():
    app.dependency_overrides[get_phone_verifier] = lambda: fake_verifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, email="asha@example.com", phone="+919876543210", password="secret123", name="Asha"):
    return client.post(
        "/api/auth/mobile/register",
        json={"email": email, "password": password, "name": name, "phoneNumber": phone},
    )


@pytest.fixture
def verified_user(client, outbox):
    """Registers and verifies a regular user; returns its credentials."""
    creds = {"email": "asha@example.com", "phone": "+919876543210", "password": "secret123"}
    assert register(client, creds["email"], creds["phone"], creds["password"]).status_code == 201
    r = client.post(
        "/api/auth/mobile/verify-otp",
        json={"email": creds["email"], "otp": outbox.last_code(creds["email"])},
    )
    assert r.status_code == 200
    return creds


def fetch_user(db, email):
    db.expire_all()
    return db.query(User).filter(User.email == email).first()
