from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base


class AccountMixin:
    """Columns shared by the two account collections (users, admins)."""

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True, nullable=False)
    phone_number = Column(String, index=True, nullable=True)

    # bcrypt hash. Federated accounts (provider != "local") may have none.
    password_hash = Column(String, nullable=True)

    name = Column(String, nullable=False, default="User")
    is_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    provider = Column(String, default="local", nullable=False)  # "local" | "phone" | "google"
    firebase_uid = Column(String, index=True, nullable=True)

    # [{"otp": "123456", "createdAt": iso, "expiresAt": iso}], newest last.
    email_otps = Column(JSON, default=list, nullable=False)
    # [{"token": str, "device": str, "lastUsed": iso}], most recently used first.
    fcm_tokens = Column(JSON, default=list, nullable=False)

    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class User(AccountMixin, Base):
    __tablename__ = "users"

    image = Column(String, nullable=True)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    country = Column(String, nullable=True)
    date_of_birth = Column(DateTime, nullable=True)

    customer = relationship("Customer", back_populates="user", uselist=False)


class Admin(AccountMixin, Base):
    __tablename__ = "admins"

    image = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    gst_number = Column(String, nullable=True)
    onboarding_completed = Column(Boolean, default=False, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True, index=True)

    # Denormalized copies of the account's identity.
    email = Column(String, index=True, nullable=True)
    phone_number = Column(String, index=True, nullable=True)
    name = Column(String, nullable=True)

    is_verified = Column(Boolean, default=False, nullable=False)
    provider = Column(String, default="local", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="customer")
    wishlist_items = relationship("WishlistItem", back_populates="customer", cascade="all, delete-orphan")
    cart_items = relationship("CartItem", back_populates="customer", cascade="all, delete-orphan")


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    # No FK: the product may be deleted while the wishlist entry survives.
    product_id = Column(Integer, nullable=False, index=True)

    # Snapshot of product/variant display data: productName, variantIndex,
    # variantSellingPrice, price, variantMRP, variantStockQuantity, variants, ...
    product_data = Column(JSON, nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    customer = relationship("Customer", back_populates="wishlist_items")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    variant_index = Column(Integer, default=0, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    # Price snapshot at time of add.
    variant_selling_price = Column(Float, nullable=False, default=0)
    variant_mrp = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    customer = relationship("Customer", back_populates="cart_items")


class CartReminderLog(Base):
    """One row per abandoned-cart reminder actually delivered."""

    __tablename__ = "cart_reminder_logs"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    reminder_type = Column(String, nullable=False)  # "1hour" | "24hours" | "3days"
    cart_activity_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class OnlineOrder(Base):
    __tablename__ = "online_orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    total_amount = Column(Float, nullable=False, default=0)
    status = Column(String, default="placed", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class OnlineProduct(Base):
    __tablename__ = "online_products"

    id = Column(Integer, primary_key=True)
    product_name = Column(String, nullable=False)
    short_description = Column(Text, nullable=True)
    brand = Column(String, nullable=True)
    category = Column(String, nullable=True)
    default_product_image = Column(String, nullable=True)

    # [{"variantName", "variantSellingPrice", "variantMRP", "variantStockQuantity",
    #   "variantLowStockAlert", "inventoryProductId", "variantImages"}]
    variants = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Item(Base):
    """Inventory item; online variants and POS products point at it."""

    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    item_name = Column(String, nullable=False)
    quantity = Column(Integer, default=0, nullable=False)
    low_stock_alert_level = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class POSProduct(Base):
    __tablename__ = "pos_products"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    item_name = Column(String, nullable=False)
    display = Column(Boolean, default=True, nullable=False)


class ExpenseCategory(Base):
    __tablename__ = "expense_categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True)
    expense_number = Column(String, unique=True, index=True, nullable=False)  # EXP-2026-001

    category_id = Column(Integer, ForeignKey("expense_categories.id"), nullable=False, index=True)
    category_name = Column(String, nullable=False)

    expense = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    expense_date = Column(DateTime, nullable=False)
    payment_method = Column(String, nullable=True)

    # Null when the supplier was typed in by hand ("other" / "manual_*").
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    supplier_name = Column(String, nullable=True)
    vendor = Column(String, nullable=True)

    receipt_url = Column(String, nullable=True)
    status = Column(String, default="pending", nullable=False)  # "pending" | "paid"
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    category = relationship("ExpenseCategory")


class EmailConfiguration(Base):
    """Outbound mail settings editable from the dashboard; the active row wins over env."""

    __tablename__ = "email_configurations"

    id = Column(Integer, primary_key=True)
    provider = Column(String, default="smtp", nullable=False)  # "smtp" | "brevo"
    from_email = Column(String, nullable=False)
    from_name = Column(String, nullable=True)

    api_key = Column(String, nullable=True)
    smtp_host = Column(String, nullable=True)
    smtp_port = Column(Integer, nullable=True)
    smtp_user = Column(String, nullable=True)
    smtp_password = Column(String, nullable=True)
    use_tls = Column(Boolean, default=True, nullable=False)

    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
