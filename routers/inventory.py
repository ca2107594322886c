from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import Item, OnlineProduct, POSProduct
from schemas import CamelIn
from utils import wishlist_alerts
from utils.effects import defer
from utils.errors import ApiError, fail_as


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory/items", tags=["inventory"])


def _links_to(variant: dict, item_id: int) -> bool:
    inv_id = (variant or {}).get("inventoryProductId")
    return inv_id is not None and str(inv_id) == str(item_id)


def _online_products_using(db: Session, item_id: int) -> List[OnlineProduct]:
    # Variants live in a JSON column, so the match happens in Python.
    return [p for p in db.query(OnlineProduct).all() if any(_links_to(v, item_id) for v in (p.variants or []))]


class ItemUpdateIn(CamelIn):
    item_name: Optional[str] = None
    quantity: Optional[int] = None
    low_stock_alert_level: Optional[int] = None


@router.put("/{item_id}")
def update_item(item_id: int, payload: ItemUpdateIn, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    if payload.quantity is not None and payload.quantity < 0:
        raise ApiError(400, "Quantity cannot be negative")

    with fail_as("Failed to update item", db):
        item = db.get(Item, item_id)
        if not item:
            raise ApiError(404, "Item not found")

        if payload.item_name is not None:
            if not payload.item_name.strip():
                raise ApiError(400, "Item name cannot be empty")
            item.item_name = payload.item_name.strip()
        if payload.low_stock_alert_level is not None:
            item.low_stock_alert_level = payload.low_stock_alert_level

        restocked = []
        if payload.quantity is not None:
            item.quantity = payload.quantity
            # Keep the online variants' cached stock in step with the inventory.
            for product in _online_products_using(db, item_id):
                variants = []
                for index, variant in enumerate(product.variants or []):
                    if _links_to(variant, item_id):
                        variant = {**variant, "variantStockQuantity": payload.quantity}
                        restocked.append((product.id, index))
                    variants.append(variant)
                product.variants = variants

        db.commit()
        db.refresh(item)

    for product_id, index in restocked:
        defer(
            background_tasks,
            f"Back in stock check for product {product_id} variant {index}",
            wishlist_alerts.check_wishlist_back_in_stock,
            product_id,
            index,
            item.quantity,
        )

    return {
        "success": True,
        "message": "Item updated successfully",
        "data": {
            "id": item.id,
            "itemName": item.item_name,
            "quantity": item.quantity,
            "lowStockAlertLevel": item.low_stock_alert_level,
            "linkedVariants": len(restocked),
        },
    }


@router.get("/{item_id}/usage")
def check_item_usage(item_id: int, db: Session = Depends(get_db)):
    with fail_as("Failed to check item usage", db):
        item = db.get(Item, item_id)
        if not item:
            raise ApiError(404, "Item not found")

        pos_products = db.query(POSProduct).filter(POSProduct.item_id == item_id).all()
        online_products = _online_products_using(db, item_id)

    in_pos = bool(pos_products)
    in_online = bool(online_products)
    return {
        "success": True,
        "data": {
            "isUsedInPOS": in_pos,
            "isUsedInOnline": in_online,
            "canEdit": not in_pos and not in_online,
            "canDelete": not in_pos and not in_online,
            "posProducts": [{"id": p.id, "name": p.item_name, "display": p.display} for p in pos_products],
            "onlineProducts": [
                {
                    "id": p.id,
                    "shortDescription": p.short_description,
                    "brand": p.brand,
                    "category": p.category,
                    "variantCount": sum(1 for v in (p.variants or []) if _links_to(v, item_id)),
                }
                for p in online_products
            ],
        },
    }


class BulkUsageIn(CamelIn):
    item_ids: Optional[List[int]] = None


@router.post("/usage/bulk")
def check_bulk_item_usage(payload: BulkUsageIn, db: Session = Depends(get_db)):
    if not payload.item_ids:
        raise ApiError(400, "itemIds array is required")

    with fail_as("Failed to check bulk item usage", db):
        pos_ids = {
            row[0] for row in db.query(POSProduct.item_id).filter(POSProduct.item_id.in_(payload.item_ids)).all()
        }
        wanted = {str(i) for i in payload.item_ids}
        online_ids = set()
        for product in db.query(OnlineProduct).all():
            for variant in product.variants or []:
                inv_id = (variant or {}).get("inventoryProductId")
                if inv_id is not None and str(inv_id) in wanted:
                    online_ids.add(str(inv_id))

    usage = {}
    for item_id in payload.item_ids:
        in_pos = item_id in pos_ids
        in_online = str(item_id) in online_ids
        usage[str(item_id)] = {
            "isUsedInPOS": in_pos,
            "isUsedInOnline": in_online,
            "canEdit": not in_pos and not in_online,
            "canDelete": not in_pos and not in_online,
        }
    return {"success": True, "data": usage}
