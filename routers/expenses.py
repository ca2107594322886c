from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models import Expense, ExpenseCategory, Supplier
from schemas import CamelIn
from utils.errors import ApiError, fail_as
from utils.images import proxy_image_url


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/expenses", tags=["expenses"])

VALID_STATUSES = ("pending", "paid")
RECEIPT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


def generate_expense_number(db: Session, year: Optional[int] = None) -> str:
    """Next EXP-<year>-NNN: the latest number issued this year plus one, restarting at 001."""
    year = year or datetime.utcnow().year
    prefix = f"EXP-{year}-"
    latest = (
        db.query(Expense)
        .filter(Expense.expense_number.like(f"{prefix}%"))
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .first()
    )
    next_number = 1
    if latest:
        try:
            next_number = int(latest.expense_number.split("-")[2]) + 1
        except (IndexError, ValueError):
            logger.warning("Unparseable expense number %s", latest.expense_number)
            next_number = db.query(Expense).filter(Expense.expense_number.like(f"{prefix}%")).count() + 1
    return f"{prefix}{next_number:03d}"


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        raise ApiError(400, "Invalid expense date")


def _is_manual_supplier(supplier_id: Optional[str]) -> bool:
    return not supplier_id or supplier_id == "other" or supplier_id.startswith("manual_")


def _resolve_supplier(db: Session, supplier_id: Optional[str]) -> Optional[int]:
    """Id of an existing supplier, None for hand-typed ones; 404 otherwise."""
    if _is_manual_supplier(supplier_id):
        return None
    supplier = db.get(Supplier, int(supplier_id)) if supplier_id.isdigit() else None
    if not supplier:
        raise ApiError(404, "Supplier not found")
    return supplier.id


def _upload_root() -> Path:
    return Path(os.getenv("UPLOAD_DIR", "uploads"))


def _discard_receipt(url: Optional[str]) -> None:
    # Only locally stored receipts can be removed from here.
    if not url or not url.startswith("/static/"):
        return
    path = _upload_root() / url[len("/static/"):]
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.exception("Could not remove receipt %s", path)


def _expense_out(e: Expense) -> dict:
    return {
        "id": e.id,
        "expenseNumber": e.expense_number,
        "categoryId": e.category_id,
        "categoryName": e.category_name,
        "category": {"id": e.category.id, "name": e.category.name} if e.category else None,
        "expense": e.expense,
        "description": e.description,
        "amount": e.amount,
        "expenseDate": e.expense_date.isoformat() if e.expense_date else None,
        "paymentMethod": e.payment_method,
        "supplierId": e.supplier_id,
        "supplierName": e.supplier_name,
        "vendor": e.vendor,
        "receiptUrl": proxy_image_url(e.receipt_url),
        "status": e.status,
        "notes": e.notes,
        "createdAt": e.created_at.isoformat() if e.created_at else None,
    }


class CategoryIn(CamelIn):
    name: Optional[str] = None
    description: Optional[str] = None


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    with fail_as("Failed to fetch expense categories", db):
        rows = db.query(ExpenseCategory).order_by(ExpenseCategory.name).all()
    return {
        "success": True,
        "data": [{"id": c.id, "name": c.name, "description": c.description} for c in rows],
    }


@router.post("/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    name = (payload.name or "").strip()
    if not name:
        raise ApiError(400, "Category name is required")

    with fail_as("Failed to create expense category", db):
        if db.query(ExpenseCategory).filter(func.lower(ExpenseCategory.name) == name.lower()).first():
            raise ApiError(400, "Expense category already exists")
        category = ExpenseCategory(name=name, description=(payload.description or "").strip() or None)
        db.add(category)
        db.commit()
        db.refresh(category)

    return {
        "success": True,
        "message": "Expense category created successfully",
        "data": {"id": category.id, "name": category.name, "description": category.description},
    }


@router.get("")
def get_all_expenses(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    status: Optional[str] = None,
    supplier_id: Optional[int] = Query(None, alias="supplierId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    with fail_as("Failed to fetch expenses", db):
        q = db.query(Expense)
        if category_id:
            q = q.filter(Expense.category_id == category_id)
        if status:
            q = q.filter(Expense.status == status)
        if supplier_id:
            q = q.filter(Expense.supplier_id == supplier_id)
        if start_date:
            q = q.filter(Expense.expense_date >= _parse_date(start_date))
        if end_date:
            q = q.filter(Expense.expense_date <= _parse_date(end_date))
        expenses = [_expense_out(e) for e in q.order_by(Expense.expense_date.desc()).all()]

    return {"success": True, "count": len(expenses), "data": expenses}


@router.get("/next-number")
def get_next_expense_number(db: Session = Depends(get_db)):
    with fail_as("Failed to generate expense number", db):
        number = generate_expense_number(db)
    return {"success": True, "data": {"expenseNumber": number}}


@router.get("/stats")
def get_expense_stats(db: Session = Depends(get_db)):
    with fail_as("Failed to fetch expense statistics", db):
        def _count(status: Optional[str] = None) -> int:
            q = db.query(func.count(Expense.id))
            return int((q.filter(Expense.status == status) if status else q).scalar() or 0)

        def _sum(status: Optional[str] = None) -> float:
            q = db.query(func.sum(Expense.amount))
            return float((q.filter(Expense.status == status) if status else q).scalar() or 0)

        total_col = func.sum(Expense.amount)
        by_category = (
            db.query(Expense.category_name, total_col, func.count(Expense.id))
            .group_by(Expense.category_name)
            .order_by(total_col.desc())
            .all()
        )
        recent = db.query(Expense).order_by(Expense.created_at.desc(), Expense.id.desc()).limit(5).all()

        data = {
            "total": _count(),
            "pending": _count("pending"),
            "paid": _count("paid"),
            "totalAmount": _sum(),
            "pendingAmount": _sum("pending"),
            "paidAmount": _sum("paid"),
            "expensesByCategory": [
                {"categoryName": name, "amount": float(amount or 0), "count": count}
                for name, amount, count in by_category
            ],
            "recentExpenses": [
                {
                    "id": e.id,
                    "expense": e.expense,
                    "categoryName": e.category_name,
                    "amount": e.amount,
                    "status": e.status,
                    "expenseDate": e.expense_date.isoformat() if e.expense_date else None,
                }
                for e in recent
            ],
        }

    return {"success": True, "data": data}


@router.get("/category/{category_id}")
def get_expenses_by_category(category_id: int, db: Session = Depends(get_db)):
    with fail_as("Failed to fetch expenses", db):
        rows = (
            db.query(Expense)
            .filter(Expense.category_id == category_id)
            .order_by(Expense.expense_date.desc())
            .all()
        )
        expenses = [_expense_out(e) for e in rows]
    return {"success": True, "count": len(expenses), "data": expenses}


@router.get("/{expense_id}")
def get_expense_by_id(expense_id: int, db: Session = Depends(get_db)):
    with fail_as("Failed to fetch expense", db):
        expense = db.get(Expense, expense_id)
        if not expense:
            raise ApiError(404, "Expense not found")
        data = _expense_out(expense)
    return {"success": True, "data": data}


class ExpenseIn(CamelIn):
    category_id: Optional[int] = None
    expense: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    expense_date: Optional[str] = None
    payment_method: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    vendor: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None


@router.post("", status_code=201)
def create_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    if not (payload.category_id and payload.expense and payload.amount and payload.expense_date):
        raise ApiError(
            400,
            "Missing required fields",
            required=["categoryId", "expense", "amount", "expenseDate"],
        )
    if payload.status and payload.status not in VALID_STATUSES:
        raise ApiError(400, "Invalid status. Must be one of: pending, paid")
    expense_date = _parse_date(payload.expense_date)

    with fail_as("Failed to create expense", db):
        category = db.get(ExpenseCategory, payload.category_id)
        if not category:
            raise ApiError(404, "Expense category not found")
        supplier_id = _resolve_supplier(db, payload.supplier_id)

        expense = Expense(
            expense_number=generate_expense_number(db),
            category_id=category.id,
            category_name=category.name,
            expense=payload.expense,
            description=payload.description or None,
            amount=float(payload.amount),
            expense_date=expense_date,
            payment_method=payload.payment_method or None,
            supplier_id=supplier_id,
            supplier_name=payload.supplier_name or None,
            vendor=payload.vendor or payload.supplier_name or None,
            receipt_url=payload.receipt_url or None,
            status=payload.status or "pending",
            notes=payload.notes or None,
        )
        db.add(expense)
        db.commit()
        db.refresh(expense)
        data = _expense_out(expense)

    logger.info("Expense %s created", data["expenseNumber"])
    return {"success": True, "message": "Expense created successfully", "data": data}


class ExpenseUpdateIn(ExpenseIn):
    remove_receipt: Optional[bool] = None


@router.put("/{expense_id}")
def update_expense(expense_id: int, payload: ExpenseUpdateIn, db: Session = Depends(get_db)):
    if payload.status and payload.status not in VALID_STATUSES:
        raise ApiError(400, "Invalid status. Must be one of: pending, paid")

    fields = payload.model_fields_set
    with fail_as("Failed to update expense", db):
        expense = db.get(Expense, expense_id)
        if not expense:
            raise ApiError(404, "Expense not found")

        if payload.category_id and payload.category_id != expense.category_id:
            category = db.get(ExpenseCategory, payload.category_id)
            if not category:
                raise ApiError(404, "Expense category not found")
            expense.category_id = category.id
            expense.category_name = category.name

        if "supplier_id" in fields:
            expense.supplier_id = _resolve_supplier(db, payload.supplier_id)

        if payload.remove_receipt or ("receipt_url" in fields and not payload.receipt_url):
            _discard_receipt(expense.receipt_url)
            expense.receipt_url = None
        elif payload.receipt_url and payload.receipt_url != expense.receipt_url:
            _discard_receipt(expense.receipt_url)
            expense.receipt_url = payload.receipt_url

        if payload.expense:
            expense.expense = payload.expense
        if payload.amount is not None:
            expense.amount = float(payload.amount)
        if payload.expense_date:
            expense.expense_date = _parse_date(payload.expense_date)
        if payload.status:
            expense.status = payload.status
        for name in ("description", "payment_method", "supplier_name", "notes"):
            if name in fields:
                setattr(expense, name, getattr(payload, name))
        if "vendor" in fields:
            expense.vendor = payload.vendor
        elif payload.supplier_name:
            expense.vendor = payload.supplier_name

        db.commit()
        db.refresh(expense)
        data = _expense_out(expense)

    return {"success": True, "message": "Expense updated successfully", "data": data}


@router.post("/{expense_id}/receipt")
async def upload_receipt(expense_id: int, file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Attach a receipt image/PDF to an expense.

    Saves to: {UPLOAD_DIR}/expense-receipts/exp_<id>_<ts>_<rand>.<ext>
    Served at: /static/expense-receipts/<...>
    """
    content_type = (file.content_type or "").lower().strip()
    if content_type not in RECEIPT_TYPES:
        raise ApiError(400, "Unsupported receipt type. Use JPG/PNG/WEBP/PDF.")

    max_bytes = int(os.getenv("RECEIPT_MAX_BYTES", str(10 * 1024 * 1024)))
    data = await file.read()
    if not data:
        raise ApiError(400, "Empty file.")
    if len(data) > max_bytes:
        raise ApiError(400, f"Receipt too large (max {max_bytes} bytes).")

    expense = db.get(Expense, expense_id)
    if not expense:
        raise ApiError(404, "Expense not found")

    receipt_dir = _upload_root() / "expense-receipts"
    receipt_dir.mkdir(parents=True, exist_ok=True)
    fname = f"exp_{expense.id}_{int(time.time())}_{secrets.token_hex(4)}.{RECEIPT_TYPES[content_type]}"
    try:
        (receipt_dir / fname).write_bytes(data)
    except OSError:
        logger.exception("Failed to save receipt for expense %s", expense.id)
        raise ApiError(500, "Failed to save uploaded receipt.")

    with fail_as("Failed to attach receipt", db):
        _discard_receipt(expense.receipt_url)
        expense.receipt_url = f"/static/expense-receipts/{fname}"
        db.commit()
        db.refresh(expense)
        out = _expense_out(expense)

    return {"success": True, "message": "Receipt uploaded successfully", "data": out}
