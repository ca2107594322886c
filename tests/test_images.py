import pytest

from utils.images import object_url, proxy_image_url, proxy_image_urls

BUCKET = "https://retail-hub-media.s3.eu-north-1.amazonaws.com"


@pytest.mark.parametrize(
    "stored, expected",
    [
        ("products/mug.jpg", "/image/products/mug.jpg"),
        (f"{BUCKET}/products/mug.jpg", "/image/products/mug.jpg"),
        ("/image/products/mug.jpg", "/image/products/mug.jpg"),
        ("/static/expense-receipts/r.png", "/static/expense-receipts/r.png"),
        ("https://cdn.example.com/a.png", "https://cdn.example.com/a.png"),
        (None, None),
        ("", None),
    ],
)
def test_proxy_image_url(stored, expected):
    assert proxy_image_url(stored) == expected


def test_proxy_image_urls_drops_empty_entries():
    assert proxy_image_urls(["a.jpg", None, ""]) == ["/image/a.jpg"]
    assert proxy_image_urls(None) == []


def test_object_url_defaults_to_bucket(monkeypatch):
    monkeypatch.delenv("MEDIA_ORIGIN", raising=False)
    assert object_url("products/my%20mug.jpg") == f"{BUCKET}/products/my%20mug.jpg"


def test_image_route_redirects_to_media_origin(client, monkeypatch):
    monkeypatch.setenv("MEDIA_ORIGIN", "https://media.shop.test/")
    r = client.get("/image/products/mug.jpg", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == "https://media.shop.test/products/mug.jpg"


def test_wishlist_image_links_resolve(client, monkeypatch):
    monkeypatch.delenv("MEDIA_ORIGIN", raising=False)
    link = proxy_image_url(f"{BUCKET}/products/mug.jpg")
    r = client.get(link, follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == f"{BUCKET}/products/mug.jpg"
