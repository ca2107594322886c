import pytest

from utils import email_sender
from utils.email_sender import send_contact_message


def _contact(client, **overrides):
    body = {
        "name": "Meera",
        "email": "meera@example.com",
        "phone": "+919812345678",
        "message": "Do you ship to Pune?\nThanks",
        **overrides,
    }
    return client.post("/api/web/contact", json=body)


def test_contact_form_is_forwarded_to_owner(client, outbox):
    r = _contact(client)
    assert r.status_code == 200
    assert r.json()["success"] is True

    [sent] = outbox.emails
    assert sent["kind"] == "send_contact_message"
    assert sent["to_email"] == "owner@shop.test"
    assert sent["name"] == "Meera"
    assert sent["email"] == "meera@example.com"
    assert sent["phone"] == "+919812345678"


def test_contact_email_overrides_admin_address(client, outbox, monkeypatch):
    monkeypatch.setenv("CONTACT_EMAIL", "hello@shop.test")
    _contact(client)
    assert outbox.emails[0]["to_email"] == "hello@shop.test"


@pytest.mark.parametrize(
    "field, value, error",
    [
        ("name", "  ", "Name is required"),
        ("email", "", "Email is required"),
        ("message", "\n", "Message is required"),
        ("email", "meera@example", "Invalid email format"),
    ],
)
def test_contact_validation(client, outbox, field, value, error):
    r = _contact(client, **{field: value})
    assert r.status_code == 400
    assert r.json()["error"] == error
    assert outbox.emails == []


def test_contact_without_recipient(client, outbox, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("CONTACT_EMAIL", raising=False)
    r = _contact(client)
    assert r.status_code == 500
    assert r.json()["error"] == "Contact form is not configured properly. Please try again later."
    assert outbox.emails == []


def test_contact_delivery_failure(client, outbox):
    outbox.email_result = {"success": False, "message": "smtp down"}
    r = _contact(client)
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to send your message. Please try again later."


def test_contact_message_escapes_visitor_input(db, monkeypatch):
    captured = {}

    def fake_send_email(db, **kwargs):
        captured.update(kwargs)
        return {"success": True, "message": "Email sent"}

    monkeypatch.setattr(email_sender, "send_email", fake_send_email)
    send_contact_message(
        db,
        to_email="owner@shop.test",
        name="<b>Meera</b>",
        email="meera@example.com",
        message="line one\n<script>x</script>",
    )

    assert captured["subject"] == "New Contact Form Submission from <b>Meera</b>"
    assert "&lt;b&gt;Meera&lt;/b&gt;" in captured["html"]
    assert "<script>" not in captured["html"]
    assert "line one<br>" in captured["html"]
    assert "Phone:" not in captured["text"]
    assert "line one\n<script>x</script>" in captured["text"]
