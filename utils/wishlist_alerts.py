"""
Wishlist price-drop and back-in-stock alerts.

The cached `product_data` snapshot on each wishlist item doubles as the
"already alerted" marker: after a successful alert the snapshot is moved to
the new price/stock, so the same change never fires twice.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from models import OnlineProduct, WishlistItem
from utils import notifications

logger = logging.getLogger(__name__)


def snapshot_variant_index(product_data: Optional[dict]) -> int:
    return int((product_data or {}).get("variantIndex") or 0)


def snapshot_price(product_data: dict) -> Optional[float]:
    price = product_data.get("variantSellingPrice")
    if price is None:
        price = product_data.get("price")
    return price


def live_variant(product: Optional[OnlineProduct], index: int) -> Optional[dict]:
    if not product:
        return None
    variants = product.variants or []
    if index < 0 or index >= len(variants):
        return None
    return variants[index]


def drop_percentage(old_price: float, new_price: float) -> int:
    """Whole-number percentage off, halves rounded up (12.5 -> 13)."""
    if not old_price:
        return 0
    pct = Decimal(str((old_price - new_price) / old_price * 100))
    return int(pct.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def check_wishlist_price_drops(db: Session) -> dict:
    logger.info("[wishlist sweep] checking for price drops")

    items = db.query(WishlistItem).options(joinedload(WishlistItem.customer)).all()
    if not items:
        logger.info("[wishlist sweep] no wishlist items found")
        return {"success": True, "alertsSent": 0, "totalChecked": 0, "message": "No wishlist items"}

    alerts_sent = 0
    results = []

    for item in items:
        try:
            product_data = item.product_data or {}
            customer = item.customer
            if not product_data or not customer:
                continue

            product = db.get(OnlineProduct, item.product_id)
            variant = live_variant(product, snapshot_variant_index(product_data))
            if not variant:
                logger.info("[wishlist sweep] product/variant gone for item %s", item.id)
                continue

            stored_price = snapshot_price(product_data)
            current_price = variant.get("variantSellingPrice")
            if stored_price is None or current_price is None or not current_price < stored_price:
                continue

            drop = stored_price - current_price
            drop_pct = drop_percentage(stored_price, current_price)
            product_name = product_data.get("productName") or product.product_name
            logger.info(
                "[wishlist sweep] price drop: %s %s -> %s (%s%% off)", product_name, stored_price, current_price, drop_pct
            )

            result = notifications.send_price_drop_alert(
                db,
                customer.user_id,
                product_name,
                stored_price,
                current_price,
                item.product_id,
                drop_percentage=drop_pct,
            )
            if result.get("success"):
                alerts_sent += 1
                item.product_data = {**product_data, "variantSellingPrice": current_price, "price": current_price}
                db.commit()
            else:
                logger.warning("[wishlist sweep] price drop alert failed: %s", result.get("error"))

            results.append(
                {
                    "success": bool(result.get("success")),
                    "productName": product_name,
                    "customer": customer.name,
                    "oldPrice": stored_price,
                    "newPrice": current_price,
                    "dropAmount": drop,
                    "dropPercentage": drop_pct,
                }
            )
        except Exception:
            logger.exception("[wishlist sweep] error processing wishlist item %s", item.id)
            db.rollback()

    logger.info("[wishlist sweep] completed: %s price drop alerts sent", alerts_sent)
    return {"success": True, "alertsSent": alerts_sent, "totalChecked": len(items), "results": results}


def check_wishlist_back_in_stock(db: Session, product_id: int, variant_index: int, new_stock: int) -> dict:
    """Alert everyone who wishlisted this variant while it was at zero stock."""
    logger.info(
        "[wishlist stock] product %s variant %s stock now %s", product_id, variant_index, new_stock
    )

    items = (
        db.query(WishlistItem)
        .options(joinedload(WishlistItem.customer))
        .filter(WishlistItem.product_id == product_id)
        .all()
    )
    if not items:
        return {"success": True, "alertsSent": 0, "totalChecked": 0}

    alerts_sent = 0
    for item in items:
        try:
            product_data = item.product_data or {}
            customer = item.customer
            if not product_data or not customer:
                continue
            if snapshot_variant_index(product_data) != variant_index:
                continue

            previous_stock = product_data.get("variantStockQuantity") or 0
            if not (previous_stock == 0 and new_stock > 0):
                continue

            product_name = product_data.get("productName") or product_data.get("variantName") or "Product"
            result = notifications.send_back_in_stock_alert(db, customer.user_id, product_name, new_stock, product_id)
            if result.get("success"):
                alerts_sent += 1
                item.product_data = {**product_data, "variantStockQuantity": new_stock}
                db.commit()
            else:
                logger.warning("[wishlist stock] back in stock alert failed: %s", result.get("error"))
        except Exception:
            logger.exception("[wishlist stock] error processing wishlist item %s", item.id)
            db.rollback()

    logger.info("[wishlist stock] sent %s back in stock alert(s)", alerts_sent)
    return {"success": True, "alertsSent": alerts_sent, "totalChecked": len(items)}
