"""
One logical account namespace over the split `users` / `admins` tables.

Every lookup and uniqueness check goes through this module so the two
collections cannot drift apart.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

import bcrypt
from jose import jwt
from sqlalchemy import or_
from sqlalchemy.orm import Session

from models import Admin, Customer, User

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "change_me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "10080"))  # 7 days
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MAX_FCM_TOKENS = 10

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
LOOSE_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
PHONE_RE = re.compile(r"^\+?[\d\s-]{10,15}$")
STRICT_PHONE_RE = re.compile(r"^\+91[6-9]\d{9}$")

Account = Union[User, Admin]


def _now() -> datetime:
    return datetime.utcnow()


def admin_email() -> str:
    return (os.getenv("ADMIN_EMAIL") or "").strip().lower()


def norm_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def role_of(account: Account) -> str:
    return "admin" if isinstance(account, Admin) else "user"


def account_key(account: Account) -> str:
    return f"{role_of(account)}:{account.id}"


def find_by_email(db: Session, email: str) -> Optional[Account]:
    email = norm_email(email)
    return (
        db.query(User).filter(User.email == email).first()
        or db.query(Admin).filter(Admin.email == email).first()
    )


def find_by_phone(db: Session, phone_number: str) -> Optional[Account]:
    phone_number = (phone_number or "").strip()
    return (
        db.query(User).filter(User.phone_number == phone_number).first()
        or db.query(Admin).filter(Admin.phone_number == phone_number).first()
    )


def account_exists(db: Session, *, email: str, phone_number: str, firebase_uid: Optional[str] = None) -> bool:
    """True if any user or admin already owns the email, the phone number or the Firebase uid."""
    email = norm_email(email)
    for model in (User, Admin):
        conds = [model.email == email, model.phone_number == phone_number]
        if firebase_uid:
            conds.append(model.firebase_uid == firebase_uid)
        if db.query(model.id).filter(or_(*conds)).first():
            return True
    return False


def get_account(db: Session, role: str, account_id: int) -> Optional[Account]:
    model = Admin if role == "admin" else User
    return db.get(model, account_id)


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes.
    pwd_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pwd_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_token(account: Account) -> str:
    payload = {
        "sub": str(account.id),
        "role": role_of(account),
        "iat": int(_now().timestamp()),
        "exp": int((_now() + timedelta(minutes=JWT_EXP_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> Tuple[str, int]:
    """Returns (role, account_id); raises jose.JWTError / ValueError on a bad token."""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    sub = payload.get("sub")
    if not sub:
        raise ValueError("token has no subject")
    return payload.get("role") or "user", int(sub)


def remember_device(account: Account, fcm_token: str, device: Optional[str]) -> None:
    """Move `fcm_token` to the front of the device list, keeping the 10 most recent."""
    existing = [t for t in (account.fcm_tokens or []) if (t or {}).get("token") != fcm_token]
    existing.insert(0, {"token": fcm_token, "device": device or "Mobile App", "lastUsed": _now().isoformat()})
    # Reassign so the JSON column is flagged dirty.
    account.fcm_tokens = existing[:MAX_FCM_TOKENS]


def link_customer(db: Session, user: User, *, verified: bool, provider: str = "local") -> Customer:
    """Attach `user` to the customer with the same email or phone, or create one."""
    customer = (
        db.query(Customer)
        .filter(or_(Customer.email == user.email, Customer.phone_number == user.phone_number))
        .first()
    )
    if customer:
        logger.info("Linking user %s to existing customer %s", user.id, customer.id)
        customer.user_id = user.id
        customer.is_verified = bool(customer.is_verified or verified)
    else:
        customer = Customer(
            user_id=user.id,
            email=user.email,
            name=user.name,
            phone_number=user.phone_number,
            is_verified=verified,
            provider=provider,
        )
        db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def mark_customer_verified(db: Session, user_id: int) -> int:
    updated = db.query(Customer).filter(Customer.user_id == user_id).update({"is_verified": True})
    db.commit()
    return updated


def account_summary(account: Account) -> dict:
    role = role_of(account)
    out = {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "role": role,
        "image": account.image,
        "isVerified": bool(account.is_verified),
        "phoneNumber": account.phone_number,
    }
    if role == "admin":
        out.update(
            {
                "currency": account.currency,
                "companyName": account.company_name,
                "gstNumber": account.gst_number,
                "onboardingCompleted": bool(account.onboarding_completed),
            }
        )
    else:
        out.update(
            {
                "address": account.address,
                "city": account.city,
                "state": account.state,
                "zipCode": account.zip_code,
                "country": account.country,
                "dateOfBirth": account.date_of_birth.isoformat() if account.date_of_birth else None,
            }
        )
    return out
