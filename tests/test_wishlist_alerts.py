import pytest

from models import Customer, Item, OnlineProduct, User, WishlistItem
from utils.wishlist_alerts import check_wishlist_back_in_stock, check_wishlist_price_drops, drop_percentage


def _setup(db, *, live_price=80.0, cached_price=100.0, cached_stock=0, variant_index=0, inventory_id=None):
    user = User(email="w@example.com", name="W", password_hash="x", is_verified=True)
    db.add(user)
    db.flush()
    customer = Customer(user_id=user.id, email=user.email, name="W")
    product = OnlineProduct(
        product_name="Linen Shirt",
        variants=[
            {"variantName": "S", "variantSellingPrice": live_price, "variantMRP": 120.0, "inventoryProductId": inventory_id},
            {"variantName": "M", "variantSellingPrice": 90.0, "variantMRP": 120.0},
        ],
    )
    db.add_all([customer, product])
    db.flush()
    item = WishlistItem(
        customer_id=customer.id,
        product_id=product.id,
        product_data={
            "productName": "Linen Shirt",
            "variantIndex": variant_index,
            "variantSellingPrice": cached_price,
            "price": cached_price,
            "variantStockQuantity": cached_stock,
        },
    )
    db.add(item)
    db.commit()
    return user, product, item


def _snapshot(db, item_id):
    db.expire_all()
    return db.get(WishlistItem, item_id).product_data


def test_price_drop_fires_once_and_moves_baseline(db, outbox):
    user, product, item = _setup(db)

    result = check_wishlist_price_drops(db)
    assert result["alertsSent"] == 1
    sent = outbox.of("send_price_drop_alert")
    assert len(sent) == 1
    assert sent[0]["args"] == (user.id, "Linen Shirt", 100.0, 80.0, product.id)
    assert sent[0]["kwargs"] == {"drop_percentage": 20}
    assert result["results"][0]["dropAmount"] == 20.0

    snap = _snapshot(db, item.id)
    assert snap["variantSellingPrice"] == 80.0
    assert snap["price"] == 80.0

    assert check_wishlist_price_drops(db)["alertsSent"] == 0
    assert len(outbox.of("send_price_drop_alert")) == 1


@pytest.mark.parametrize(
    "old, new, expected",
    [(100.0, 80.0, 20), (80.0, 70.0, 13), (200.0, 199.0, 1), (300.0, 299.0, 0), (0, 10.0, 0)],
)
def test_drop_percentage_rounds_halves_up(old, new, expected):
    assert drop_percentage(old, new) == expected


def test_half_percent_drop_is_reported_rounded_up(db, outbox):
    _setup(db, live_price=70.0, cached_price=80.0)
    check_wishlist_price_drops(db)
    assert outbox.of("send_price_drop_alert")[0]["kwargs"] == {"drop_percentage": 13}


def test_price_increase_or_equal_is_ignored(db, outbox):
    _setup(db, live_price=100.0, cached_price=100.0)
    assert check_wishlist_price_drops(db)["alertsSent"] == 0
    assert outbox.of("send_price_drop_alert") == []


def test_price_drop_uses_snapshot_variant_index(db, outbox):
    _, _, item = _setup(db, live_price=200.0, cached_price=95.0, variant_index=1)
    # Variant 1 is live at 90.
    assert check_wishlist_price_drops(db)["alertsSent"] == 1
    assert _snapshot(db, item.id)["variantSellingPrice"] == 90.0


def test_missing_product_or_variant_is_skipped(db, outbox):
    _, product, item = _setup(db, variant_index=5)
    assert check_wishlist_price_drops(db)["alertsSent"] == 0

    db.delete(db.get(OnlineProduct, product.id))
    db.commit()
    assert check_wishlist_price_drops(db)["alertsSent"] == 0
    assert outbox.of("send_price_drop_alert") == []


def test_failed_price_alert_keeps_old_baseline(db, outbox):
    _, _, item = _setup(db)
    outbox.push_result = {"success": False, "error": "no devices"}
    assert check_wishlist_price_drops(db)["alertsSent"] == 0
    assert _snapshot(db, item.id)["variantSellingPrice"] == 100.0


def test_back_in_stock_zero_to_positive(db, outbox):
    user, product, item = _setup(db, cached_stock=0)
    result = check_wishlist_back_in_stock(db, product.id, 0, 5)
    assert result["alertsSent"] == 1
    assert outbox.of("send_back_in_stock_alert")[0]["args"] == (user.id, "Linen Shirt", 5, product.id)
    assert _snapshot(db, item.id)["variantStockQuantity"] == 5

    # Already marked in stock.
    assert check_wishlist_back_in_stock(db, product.id, 0, 7)["alertsSent"] == 0


def test_back_in_stock_requires_previous_zero(db, outbox):
    _, product, _ = _setup(db, cached_stock=3)
    assert check_wishlist_back_in_stock(db, product.id, 0, 5)["alertsSent"] == 0
    assert outbox.of("send_back_in_stock_alert") == []


def test_back_in_stock_ignores_other_variants(db, outbox):
    _, product, _ = _setup(db, cached_stock=0, variant_index=1)
    assert check_wishlist_back_in_stock(db, product.id, 0, 5)["alertsSent"] == 0


def test_back_in_stock_ignores_zero_new_stock(db, outbox):
    _, product, _ = _setup(db, cached_stock=0)
    assert check_wishlist_back_in_stock(db, product.id, 0, 0)["alertsSent"] == 0


def test_inventory_update_triggers_back_in_stock(client, db, outbox):
    inv = Item(item_name="Linen Shirt S", quantity=0)
    db.add(inv)
    db.commit()
    _, product, item = _setup(db, cached_stock=0, inventory_id=inv.id)

    r = client.put(f"/api/inventory/items/{inv.id}", json={"quantity": 4})
    assert r.status_code == 200
    assert r.json()["data"]["linkedVariants"] == 1

    assert len(outbox.of("send_back_in_stock_alert")) == 1
    assert _snapshot(db, item.id)["variantStockQuantity"] == 4
    assert db.get(OnlineProduct, product.id).variants[0]["variantStockQuantity"] == 4
