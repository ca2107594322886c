from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models import Customer, Item, OnlineProduct, WishlistItem
from schemas import CamelIn
from utils.errors import ApiError, fail_as
from utils.images import proxy_image_url, proxy_image_urls
from utils.wishlist_alerts import live_variant, snapshot_variant_index


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/online/wishlist", tags=["wishlist"])

DEFAULT_LOW_STOCK_LEVEL = 10


def stock_status(quantity: int, alert_level: int) -> str:
    if quantity == 0:
        return "out-of-stock"
    if quantity <= alert_level:
        return "low-stock"
    return "in-stock"


def _customer(db: Session, user_id: Optional[int]) -> Optional[Customer]:
    if not user_id:
        raise ApiError(400, "User ID is required")
    return db.query(Customer).filter(Customer.user_id == user_id).first()


def _with_inventory_stock(db: Session, variant: dict) -> dict:
    inv_id = variant.get("inventoryProductId")
    if not inv_id:
        return variant
    try:
        inv = db.get(Item, inv_id)
    except Exception:
        logger.exception("Inventory lookup failed for variant %s", variant.get("variantName"))
        return variant
    if not inv:
        return variant
    alert_level = variant.get("variantLowStockAlert") or inv.low_stock_alert_level or DEFAULT_LOW_STOCK_LEVEL
    return {
        **variant,
        "variantStockQuantity": inv.quantity,
        "variantStockStatus": stock_status(inv.quantity, alert_level),
    }


def _format(item: WishlistItem, product_data: dict) -> dict:
    return {
        "wishlistItemId": item.id,
        "addedAt": item.added_at.isoformat() if item.added_at else None,
        **product_data,
        "defaultProductImage": proxy_image_url(product_data.get("defaultProductImage")),
        "variants": [
            {**v, "variantImages": proxy_image_urls(v.get("variantImages"))}
            for v in (product_data.get("variants") or [])
        ],
    }


def refresh_snapshot(db: Session, item: WishlistItem) -> dict:
    """
    Bring the cached snapshot in line with the live product and inventory.

    Returns the cached data untouched when the product or variant is gone.
    """
    cached = item.product_data or {}
    product = db.get(OnlineProduct, item.product_id)
    index = snapshot_variant_index(cached)
    if not live_variant(product, index):
        return cached

    variants = [_with_inventory_stock(db, v) for v in (product.variants or [])]
    current = variants[index] if index < len(variants) else (variants[0] if variants else {})
    updated = {
        **cached,
        "variants": variants,
        "variantStockQuantity": current.get("variantStockQuantity") or 0,
        "variantStockStatus": current.get("variantStockStatus") or "out-of-stock",
        "variantSellingPrice": current.get("variantSellingPrice"),
        "variantMRP": current.get("variantMRP"),
    }
    item.product_data = updated
    db.commit()
    return updated


class WishlistAddIn(CamelIn):
    user_id: Optional[int] = None
    product_id: Optional[int] = None
    product_data: Optional[dict] = None


@router.post("", status_code=201)
def add_to_wishlist(payload: WishlistAddIn, db: Session = Depends(get_db)):
    if not (payload.user_id and payload.product_id and payload.product_data):
        raise ApiError(400, "User ID, product ID, and product data are required")

    with fail_as("Failed to add to wishlist", db):
        customer = _customer(db, payload.user_id)
        if not customer:
            raise ApiError(404, "Customer not found. Please ensure user is registered.")

        existing = (
            db.query(WishlistItem)
            .filter(WishlistItem.customer_id == customer.id, WishlistItem.product_id == payload.product_id)
            .first()
        )
        if existing:
            raise ApiError(
                409,
                "Product already in wishlist",
                data={
                    "wishlistItemId": existing.id,
                    "addedAt": existing.added_at.isoformat(),
                    **(existing.product_data or {}),
                },
            )

        item = WishlistItem(customer_id=customer.id, product_id=payload.product_id, product_data=payload.product_data)
        db.add(item)
        db.commit()
        db.refresh(item)

    return {
        "success": True,
        "message": "Product added to wishlist",
        "data": {"wishlistItemId": item.id, "addedAt": item.added_at.isoformat(), **item.product_data},
    }


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: int, user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    with fail_as("Failed to remove from wishlist", db):
        customer = _customer(db, user_id)
        if not customer:
            raise ApiError(404, "Customer not found")

        removed = (
            db.query(WishlistItem)
            .filter(WishlistItem.customer_id == customer.id, WishlistItem.product_id == product_id)
            .delete()
        )
        db.commit()
        if not removed:
            raise ApiError(404, "Product not found in wishlist")

    return {"success": True, "message": "Product removed from wishlist"}


@router.delete("")
def clear_wishlist(user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    with fail_as("Failed to clear wishlist", db):
        customer = _customer(db, user_id)
        if not customer:
            raise ApiError(404, "Customer not found")
        removed = db.query(WishlistItem).filter(WishlistItem.customer_id == customer.id).delete()
        db.commit()

    return {"success": True, "message": "Wishlist cleared successfully", "data": {"removedCount": removed}}


@router.get("")
def get_wishlist(user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    with fail_as("Failed to get wishlist", db):
        customer = _customer(db, user_id)
        if not customer:
            return {"success": True, "data": []}

        items = (
            db.query(WishlistItem)
            .filter(WishlistItem.customer_id == customer.id)
            .order_by(WishlistItem.added_at.desc(), WishlistItem.id.desc())
            .all()
        )
        out = []
        for item in items:
            cached = item.product_data or {}
            try:
                data = refresh_snapshot(db, item)
            except Exception:
                logger.exception("Error refreshing wishlist item %s", item.id)
                db.rollback()
                data = cached
            out.append(_format(item, data))

    return {"success": True, "data": out}


@router.get("/check/{product_id}")
def check_wishlist_item(product_id: int, user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    with fail_as("Failed to check wishlist item", db):
        customer = _customer(db, user_id)
        if not customer:
            return {"success": True, "data": {"isInWishlist": False}}
        item = (
            db.query(WishlistItem)
            .filter(WishlistItem.customer_id == customer.id, WishlistItem.product_id == product_id)
            .first()
        )

    return {"success": True, "data": {"isInWishlist": item is not None, "wishlistItemId": item.id if item else None}}
