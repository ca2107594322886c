import os
from datetime import datetime
from pathlib import Path

import pytest

from models import Expense, ExpenseCategory, Supplier
from routers.expenses import generate_expense_number

YEAR = datetime.utcnow().year


@pytest.fixture
def refs(db):
    rent = ExpenseCategory(name="Rent")
    travel = ExpenseCategory(name="Travel")
    supplier = Supplier(name="Acme Traders")
    db.add_all([rent, travel, supplier])
    db.commit()
    return {"rent": rent.id, "travel": travel.id, "supplier": supplier.id}


def _create(client, refs, **overrides):
    body = {
        "categoryId": refs["rent"],
        "expense": "Shop rent",
        "amount": 15000,
        "expenseDate": "2026-10-01",
        **overrides,
    }
    return client.post("/api/expenses", json=body)


def test_numbers_are_sequential_within_the_year(client, refs):
    first = _create(client, refs).json()["data"]
    second = _create(client, refs, expense="Electricity").json()["data"]
    assert first["expenseNumber"] == f"EXP-{YEAR}-001"
    assert second["expenseNumber"] == f"EXP-{YEAR}-002"

    r = client.get("/api/expenses/next-number")
    assert r.json()["data"]["expenseNumber"] == f"EXP-{YEAR}-003"


def test_numbering_restarts_each_year(db, refs):
    db.add(
        Expense(
            expense_number="EXP-2025-007",
            category_id=refs["rent"],
            category_name="Rent",
            expense="Old rent",
            amount=1,
            expense_date=datetime(2025, 5, 1),
        )
    )
    db.commit()
    assert generate_expense_number(db, year=2025) == "EXP-2025-008"
    assert generate_expense_number(db, year=2026) == "EXP-2026-001"


def test_create_defaults_and_category_name(client, refs):
    r = _create(client, refs)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["status"] == "pending"
    assert data["categoryName"] == "Rent"
    assert data["expenseDate"].startswith("2026-10-01")


def test_create_missing_fields(client):
    r = client.post("/api/expenses", json={"expense": "Rent"})
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields"
    assert r.json()["required"] == ["categoryId", "expense", "amount", "expenseDate"]


def test_create_rejects_bad_status_and_unknown_refs(client, refs):
    assert _create(client, refs, status="cancelled").status_code == 400
    assert _create(client, refs, categoryId=999).status_code == 404
    r = _create(client, refs, supplierId="999")
    assert r.status_code == 404
    assert r.json()["error"] == "Supplier not found"


def test_create_with_known_and_manual_supplier(client, refs):
    known = _create(client, refs, supplierId=str(refs["supplier"]), supplierName="Acme Traders").json()["data"]
    assert known["supplierId"] == refs["supplier"]
    assert known["vendor"] == "Acme Traders"

    manual = _create(client, refs, supplierId="other", supplierName="Street vendor").json()["data"]
    assert manual["supplierId"] is None
    assert manual["supplierName"] == "Street vendor"

    typed = _create(client, refs, supplierId="manual_17", supplierName="Tea stall")
    assert typed.status_code == 201


def test_list_filters_and_by_category(client, refs):
    _create(client, refs)
    _create(client, refs, categoryId=refs["travel"], expense="Cab", amount=400, status="paid")

    assert client.get("/api/expenses").json()["count"] == 2
    paid = client.get("/api/expenses", params={"status": "paid"}).json()
    assert paid["count"] == 1
    assert paid["data"][0]["expense"] == "Cab"

    by_cat = client.get(f"/api/expenses/category/{refs['travel']}").json()
    assert [e["expense"] for e in by_cat["data"]] == ["Cab"]

    ranged = client.get("/api/expenses", params={"startDate": "2026-10-02"}).json()
    assert ranged["count"] == 0


def test_stats(client, refs):
    _create(client, refs, amount=1000)
    _create(client, refs, amount=500, status="paid")
    _create(client, refs, categoryId=refs["travel"], expense="Cab", amount=200, status="paid")

    data = client.get("/api/expenses/stats").json()["data"]
    assert data["total"] == 3
    assert data["pending"] == 1
    assert data["paid"] == 2
    assert data["totalAmount"] == 1700
    assert data["paidAmount"] == 700
    assert data["expensesByCategory"][0] == {"categoryName": "Rent", "amount": 1500, "count": 2}
    assert len(data["recentExpenses"]) == 3


def test_get_by_id_and_update(client, refs):
    created = _create(client, refs, notes="first").json()["data"]

    r = client.put(
        f"/api/expenses/{created['id']}",
        json={"status": "paid", "categoryId": refs["travel"], "notes": None},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "paid"
    assert data["categoryName"] == "Travel"
    assert data["notes"] is None
    assert data["expenseNumber"] == created["expenseNumber"]

    fetched = client.get(f"/api/expenses/{created['id']}").json()["data"]
    assert fetched["status"] == "paid"

    assert client.get("/api/expenses/9999").status_code == 404
    assert client.put("/api/expenses/9999", json={"status": "paid"}).status_code == 404


def test_categories(client):
    r = client.post("/api/expenses/categories", json={"name": "Utilities"})
    assert r.status_code == 201
    assert client.post("/api/expenses/categories", json={"name": "utilities"}).status_code == 400
    assert client.post("/api/expenses/categories", json={"name": "  "}).status_code == 400
    names = [c["name"] for c in client.get("/api/expenses/categories").json()["data"]]
    assert names == ["Utilities"]


def test_receipt_upload_and_removal(client, refs):
    expense = _create(client, refs).json()["data"]

    r = client.post(
        f"/api/expenses/{expense['id']}/receipt",
        files={"file": ("bill.png", b"\x89PNG fake", "image/png")},
    )
    assert r.status_code == 200
    url = r.json()["data"]["receiptUrl"]
    assert url.startswith("/static/expense-receipts/exp_")
    stored = Path(os.environ["UPLOAD_DIR"]) / url[len("/static/"):]
    assert stored.read_bytes() == b"\x89PNG fake"

    r = client.put(f"/api/expenses/{expense['id']}", json={"removeReceipt": True})
    assert r.json()["data"]["receiptUrl"] is None
    assert not stored.exists()


def test_receipt_rejects_unsupported_type(client, refs):
    expense = _create(client, refs).json()["data"]
    r = client.post(
        f"/api/expenses/{expense['id']}/receipt",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert r.status_code == 400
