"""
Abandoned-cart reminders.

Meant to run hourly. A reminder fires when the newest cart item of a customer
falls inside a tolerance window around one of three fixed ages; the window
absorbs the sweep interval so the exact age never has to be hit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from models import CartItem, CartReminderLog, Customer, OnlineOrder
from utils import notifications

logger = logging.getLogger(__name__)

# (reminder type, age of the cart, half-width of the window)
REMINDER_WINDOWS = (
    ("1hour", timedelta(hours=1), timedelta(minutes=10)),
    ("24hours", timedelta(hours=24), timedelta(minutes=60)),
    ("3days", timedelta(days=3), timedelta(hours=2)),
)

_TALLY_KEYS = {"1hour": "oneHour", "24hours": "twentyFourHours", "3days": "threeDays"}


def reminder_type_for(last_activity: datetime, now: datetime) -> Optional[str]:
    """The reminder whose window contains `last_activity`, if any. Bounds are inclusive."""
    for reminder_type, age, tolerance in REMINDER_WINDOWS:
        target = now - age
        if target - tolerance <= last_activity <= target + tolerance:
            return reminder_type
    return None


def cart_totals(items) -> dict:
    return {
        "itemCount": sum(i.quantity for i in items),
        "cartValue": sum(i.quantity * i.variant_selling_price for i in items),
        "savings": sum(i.quantity * (i.variant_mrp - i.variant_selling_price) for i in items),
    }


def _already_reminded(db: Session, customer_id: int, reminder_type: str, last_activity: datetime) -> bool:
    return (
        db.query(CartReminderLog.id)
        .filter(
            CartReminderLog.customer_id == customer_id,
            CartReminderLog.reminder_type == reminder_type,
            CartReminderLog.cart_activity_at == last_activity,
        )
        .first()
        is not None
    )


def check_abandoned_carts(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    logger.info("[cart sweep] checking for abandoned carts")

    customers = (
        db.query(Customer)
        .filter(Customer.cart_items.any())
        .options(selectinload(Customer.cart_items))
        .all()
    )
    if not customers:
        logger.info("[cart sweep] no carts found")
        return {"success": True, "alertsSent": 0, "totalChecked": 0, "message": "No carts"}

    alerts_sent = 0
    breakdown = {"oneHour": 0, "twentyFourHours": 0, "threeDays": 0}

    for customer in customers:
        try:
            items = sorted(customer.cart_items, key=lambda i: i.created_at, reverse=True)
            if not items:
                continue
            last_activity = items[0].created_at
            if customer.user_id is None:
                continue

            # An order at or after the last add means the cart converted.
            ordered_since = (
                db.query(OnlineOrder.id)
                .filter(OnlineOrder.user_id == customer.user_id, OnlineOrder.created_at >= last_activity)
                .first()
            )
            if ordered_since:
                continue

            reminder_type = reminder_type_for(last_activity, now)
            if not reminder_type or _already_reminded(db, customer.id, reminder_type, last_activity):
                continue

            totals = cart_totals(items)
            logger.info(
                "[cart sweep] abandoned cart: customer %s (%s) items=%s value=%.2f",
                customer.id,
                reminder_type,
                totals["itemCount"],
                totals["cartValue"],
            )
            result = notifications.send_abandoned_cart_reminder(
                db,
                customer.user_id,
                totals["itemCount"],
                totals["cartValue"],
                totals["savings"],
                reminder_type,
            )
            if not result.get("success"):
                logger.warning("[cart sweep] reminder to customer %s failed: %s", customer.id, result.get("error"))
                continue

            db.add(CartReminderLog(customer_id=customer.id, reminder_type=reminder_type, cart_activity_at=last_activity))
            db.commit()
            alerts_sent += 1
            breakdown[_TALLY_KEYS[reminder_type]] += 1
        except Exception:
            logger.exception("[cart sweep] error processing cart for customer %s", customer.id)
            db.rollback()

    logger.info("[cart sweep] completed: %s reminders sent %s", alerts_sent, breakdown)
    return {
        "success": True,
        "alertsSent": alerts_sent,
        "totalChecked": len(customers),
        "breakdown": breakdown,
    }
