"""
Push notifications over Firebase Cloud Messaging.

Every sender looks up the recipient's device tokens, sends one multicast
message and returns {"success": bool, "error"?: str}. None of them raise;
callers log the result and move on.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from firebase_admin import messaging
from sqlalchemy.orm import Session

from models import Admin, User
from utils.firebase import get_firebase_app

logger = logging.getLogger(__name__)

REMINDER_COPY = {
    "1hour": ("Forgot something?", "You left {count} item(s) worth ₹{value:.2f} in your cart."),
    "24hours": ("Your cart is waiting", "Complete your order and save ₹{savings:.2f} on {count} item(s)."),
    "3days": ("Last chance!", "Items in your cart may sell out soon. Save ₹{savings:.2f} today."),
}


def _tokens(accounts) -> List[str]:
    out: List[str] = []
    for acc in accounts:
        for entry in acc.fcm_tokens or []:
            token = (entry or {}).get("token")
            if token and token not in out:
                out.append(token)
    return out


def _push(tokens: List[str], *, title: str, body: str, data: Optional[Dict[str, str]] = None) -> dict:
    if not tokens:
        return {"success": False, "error": "No device tokens registered"}
    app = get_firebase_app()
    if app is None:
        return {"success": False, "error": "Push notifications are not configured"}
    try:
        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items()},
        )
        resp = messaging.send_each_for_multicast(message, app=app)
    except Exception as exc:
        logger.error("FCM send failed: %s", exc)
        return {"success": False, "error": str(exc)}

    if resp.success_count == 0:
        return {"success": False, "error": f"All {resp.failure_count} deliveries failed"}
    return {"success": True, "sent": resp.success_count, "failed": resp.failure_count}


def _push_to_user(db: Session, user_id: Optional[int], **message) -> dict:
    user = db.get(User, user_id) if user_id else None
    if not user:
        return {"success": False, "error": "User not found"}
    return _push(_tokens([user]), **message)


def send_new_user_registration_alert(db: Session, name: str, email: str, customer_id: Optional[int]) -> dict:
    admins = db.query(Admin).filter(Admin.is_active.is_(True)).all()
    return _push(
        _tokens(admins),
        title="New customer registered",
        body=f"{name} ({email}) just signed up.",
        data={"type": "new_user", "customerId": customer_id or ""},
    )


def send_welcome_notification(db: Session, user_id: int, name: str) -> dict:
    return _push_to_user(
        db,
        user_id,
        title=f"Welcome, {name}!",
        body="Your account is verified. Happy shopping!",
        data={"type": "welcome"},
    )


def send_price_drop_alert(
    db: Session,
    user_id: int,
    product_name: str,
    old_price: float,
    new_price: float,
    product_id: int,
    drop_percentage: Optional[int] = None,
) -> dict:
    off = f" ({drop_percentage}% off)" if drop_percentage is not None else ""
    return _push_to_user(
        db,
        user_id,
        title="Price drop on your wishlist",
        body=f"{product_name} is now ₹{new_price:g}, down from ₹{old_price:g}{off}.",
        data={"type": "price_drop", "productId": product_id},
    )


def send_back_in_stock_alert(db: Session, user_id: int, product_name: str, stock: int, product_id: int) -> dict:
    return _push_to_user(
        db,
        user_id,
        title="Back in stock",
        body=f"{product_name} is available again. Only {stock} left!",
        data={"type": "back_in_stock", "productId": product_id},
    )


def send_abandoned_cart_reminder(
    db: Session,
    user_id: int,
    item_count: int,
    cart_value: float,
    savings: float,
    reminder_type: str,
) -> dict:
    if reminder_type not in REMINDER_COPY:
        return {"success": False, "error": f"Unknown reminder type {reminder_type!r}"}
    title, template = REMINDER_COPY[reminder_type]
    return _push_to_user(
        db,
        user_id,
        title=title,
        body=template.format(count=item_count, value=cart_value, savings=savings),
        data={"type": "abandoned_cart", "reminderType": reminder_type},
    )
