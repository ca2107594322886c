from datetime import datetime, timedelta

import pytest

from models import CartItem, Customer, OnlineOrder, User
from utils import notifications
from utils.cart_alerts import check_abandoned_carts, reminder_type_for

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _cart(db, email, added_ago, items=((2, 100.0, 150.0),)):
    user = User(email=email, name=email.split("@")[0], password_hash="x", is_verified=True)
    db.add(user)
    db.flush()
    customer = Customer(user_id=user.id, email=email, name=user.name)
    db.add(customer)
    db.flush()
    for offset, (qty, price, mrp) in enumerate(items):
        db.add(
            CartItem(
                customer_id=customer.id,
                product_id=1,
                quantity=qty,
                variant_selling_price=price,
                variant_mrp=mrp,
                created_at=NOW - added_ago - timedelta(minutes=offset),
            )
        )
    db.commit()
    return user


@pytest.mark.parametrize(
    "age, expected",
    [
        (timedelta(minutes=60), "1hour"),
        (timedelta(minutes=50), "1hour"),
        (timedelta(minutes=70), "1hour"),
        (timedelta(minutes=71), None),
        (timedelta(minutes=30), None),
        (timedelta(hours=24), "24hours"),
        (timedelta(hours=23), "24hours"),
        (timedelta(hours=25, minutes=1), None),
        (timedelta(days=3), "3days"),
        (timedelta(days=3, hours=2), "3days"),
        (timedelta(days=3, hours=3), None),
        (timedelta(days=10), None),
    ],
)
def test_reminder_windows(age, expected):
    assert reminder_type_for(NOW - age, NOW) == expected


def test_one_hour_cart_gets_exactly_one_reminder(db, outbox):
    user = _cart(db, "a@example.com", timedelta(minutes=60), items=((2, 100.0, 150.0), (1, 50.0, 50.0)))

    result = check_abandoned_carts(db, now=NOW)

    assert result["alertsSent"] == 1
    assert result["breakdown"] == {"oneHour": 1, "twentyFourHours": 0, "threeDays": 0}
    sent = outbox.of("send_abandoned_cart_reminder")
    assert len(sent) == 1
    user_id, item_count, cart_value, savings, reminder_type = sent[0]["args"]
    assert user_id == user.id
    assert item_count == 3
    assert cart_value == 250.0
    assert savings == 100.0
    assert reminder_type == "1hour"


def test_order_after_last_item_suppresses_reminder(db, outbox):
    user = _cart(db, "a@example.com", timedelta(minutes=60))
    db.add(OnlineOrder(user_id=user.id, total_amount=200, created_at=NOW - timedelta(minutes=30)))
    db.commit()

    result = check_abandoned_carts(db, now=NOW)

    assert result["alertsSent"] == 0
    assert outbox.of("send_abandoned_cart_reminder") == []


def test_order_before_cart_does_not_suppress(db, outbox):
    user = _cart(db, "a@example.com", timedelta(hours=24))
    db.add(OnlineOrder(user_id=user.id, total_amount=200, created_at=NOW - timedelta(days=5)))
    db.commit()

    result = check_abandoned_carts(db, now=NOW)
    assert result["breakdown"]["twentyFourHours"] == 1


def test_rerun_does_not_repeat_reminder(db, outbox):
    _cart(db, "a@example.com", timedelta(minutes=60))
    check_abandoned_carts(db, now=NOW)
    again = check_abandoned_carts(db, now=NOW + timedelta(minutes=5))
    assert again["alertsSent"] == 0
    assert len(outbox.of("send_abandoned_cart_reminder")) == 1


def test_each_offset_fires_once_over_the_cart_lifetime(db, outbox):
    _cart(db, "a@example.com", timedelta(0))
    for hours in range(0, 24 * 4):
        check_abandoned_carts(db, now=NOW + timedelta(hours=hours))
    kinds = [p["args"][4] for p in outbox.of("send_abandoned_cart_reminder")]
    assert kinds == ["1hour", "24hours", "3days"]


def test_cart_outside_windows_is_ignored(db, outbox):
    _cart(db, "a@example.com", timedelta(hours=5))
    assert check_abandoned_carts(db, now=NOW)["alertsSent"] == 0


def test_failed_delivery_is_not_counted(db, outbox):
    _cart(db, "a@example.com", timedelta(minutes=60))
    outbox.push_result = {"success": False, "error": "no devices"}
    result = check_abandoned_carts(db, now=NOW)
    assert result["alertsSent"] == 0

    # Not recorded as sent, so the next run inside the window retries.
    outbox.push_result = {"success": True}
    assert check_abandoned_carts(db, now=NOW + timedelta(minutes=5))["alertsSent"] == 1


def test_one_failing_customer_does_not_abort_sweep(db, outbox, monkeypatch):
    bad = _cart(db, "bad@example.com", timedelta(minutes=60))
    _cart(db, "good@example.com", timedelta(minutes=60))

    original = notifications.send_abandoned_cart_reminder

    def flaky(db, user_id, *args):
        if user_id == bad.id:
            raise RuntimeError("boom")
        return original(db, user_id, *args)

    monkeypatch.setattr(notifications, "send_abandoned_cart_reminder", flaky)
    result = check_abandoned_carts(db, now=NOW)
    assert result["success"] is True
    assert result["alertsSent"] == 1
    assert result["totalChecked"] == 2


def test_no_carts(db):
    assert check_abandoned_carts(db, now=NOW) == {
        "success": True,
        "alertsSent": 0,
        "totalChecked": 0,
        "message": "No carts",
    }
