"""
Phone-number accounts verified through Firebase SMS.

The client completes SMS verification with Firebase and sends us the
resulting ID token; no email OTP is involved.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import CamelIn
from utils import email_sender, notifications, sessions
from utils.accounts import (
    EMAIL_RE,
    STRICT_PHONE_RE,
    account_exists,
    account_key,
    account_summary,
    create_token,
    find_by_phone,
    hash_password,
    link_customer,
    norm_email,
    remember_device,
)
from utils.effects import defer, side_effect
from utils.errors import ApiError, fail_as
from utils.firebase import PhoneTokenError, PhoneVerifier, get_phone_verifier


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mobile", tags=["phone-auth"])


def _verified_phone(verifier: PhoneVerifier, firebase_token: str, phone_number: str) -> dict:
    try:
        decoded = verifier(firebase_token)
    except PhoneTokenError as exc:
        logger.warning("Firebase token verification failed: %s", exc)
        raise ApiError(401, "Invalid Firebase token. Please verify your phone number again.")
    if decoded.get("phone_number") != phone_number:
        raise ApiError(401, "Phone number mismatch. Please try again.")
    return decoded


class PhoneRegisterIn(CamelIn):
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    password: Optional[str] = None
    firebase_token: Optional[str] = None


@router.post("/phone-register", status_code=201)
def phone_register(
    payload: PhoneRegisterIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    verifier: PhoneVerifier = Depends(get_phone_verifier),
):
    if not (payload.name and payload.email and payload.phone_number and payload.password and payload.firebase_token):
        raise ApiError(400, "All fields are required including Firebase token")

    email = norm_email(payload.email)
    phone = payload.phone_number.strip()
    if not EMAIL_RE.match(email):
        raise ApiError(400, "Invalid email format")
    if not STRICT_PHONE_RE.match(phone):
        raise ApiError(400, "Invalid phone number format. Use +91XXXXXXXXXX")

    decoded = _verified_phone(verifier, payload.firebase_token, phone)

    with fail_as("Registration failed. Please try again.", db):
        if account_exists(db, email=email, phone_number=phone, firebase_uid=decoded.get("uid")):
            raise ApiError(400, "Account already exists with this email or phone number. Please sign in.")

        user = User(
            email=email,
            password_hash=hash_password(payload.password),
            name=payload.name.strip(),
            phone_number=phone,
            is_verified=True,
            is_active=True,
            provider="phone",
            firebase_uid=decoded.get("uid"),
            email_otps=[],
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Phone user created: %s", user.id)

        token = create_token(user)
        sessions.add_session(account_key(user), token)
        data = {
            "token": token,
            "user": {
                "id": user.id,
                "email": user.email,
                "name": user.name,
                "phoneNumber": user.phone_number,
                "role": "user",
                "isVerified": True,
            },
        }

    customer_id = None
    with side_effect("Customer link", db):
        customer_id = link_customer(db, user, verified=True, provider="phone").id

    profile = data["user"]
    defer(
        background_tasks,
        "New user registration alert",
        notifications.send_new_user_registration_alert,
        profile["name"],
        profile["email"],
        customer_id,
    )
    defer(
        background_tasks,
        f"Welcome notification for user {profile['id']}",
        notifications.send_welcome_notification,
        profile["id"],
        profile["name"],
    )
    defer(
        background_tasks,
        f"Welcome email to {profile['email']}",
        email_sender.send_welcome_email,
        to_email=profile["email"],
        name=profile["name"],
    )

    return {"success": True, "message": "Registration successful", "data": data}


class PhoneLoginIn(CamelIn):
    phone_number: Optional[str] = None
    firebase_token: Optional[str] = None
    fcm_token: Optional[str] = None


@router.post("/phone-login")
def phone_login(
    payload: PhoneLoginIn,
    user_agent: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    verifier: PhoneVerifier = Depends(get_phone_verifier),
):
    if not payload.phone_number or not payload.firebase_token:
        raise ApiError(400, "Phone number and Firebase token are required")

    phone = payload.phone_number.strip()
    decoded = _verified_phone(verifier, payload.firebase_token, phone)

    with fail_as("Login failed. Please try again.", db):
        user = db.query(User).filter(User.phone_number == phone).first()
        if not user:
            raise ApiError(404, "Account not found. Please register first.", needsRegistration=True)
        if not user.is_active:
            raise ApiError(401, "Account is deactivated. Please contact administrator.")

        user.last_login = datetime.utcnow()
        user.firebase_uid = decoded.get("uid")
        if payload.fcm_token:
            remember_device(user, payload.fcm_token, user_agent)
        db.commit()
        db.refresh(user)

        token = create_token(user)
        sessions.add_session(account_key(user), token)

    return {
        "success": True,
        "message": "Login successful",
        "data": {"token": token, "user": account_summary(user)},
    }


class ResetPasswordPhoneIn(CamelIn):
    phone_number: Optional[str] = None
    new_password: Optional[str] = None
    firebase_token: Optional[str] = None


@router.post("/reset-password-phone")
def reset_password_with_phone(
    payload: ResetPasswordPhoneIn,
    db: Session = Depends(get_db),
    verifier: PhoneVerifier = Depends(get_phone_verifier),
):
    if not (payload.phone_number and payload.new_password and payload.firebase_token):
        raise ApiError(400, "Phone number, new password, and Firebase token are required")
    if len(payload.new_password) < 6:
        raise ApiError(400, "Password must be at least 6 characters")

    phone = payload.phone_number.strip()
    _verified_phone(verifier, payload.firebase_token, phone)

    with fail_as("Password reset failed. Please try again.", db):
        account = find_by_phone(db, phone)
        if not account:
            raise ApiError(404, "Account not found with this phone number")
        if not account.is_active:
            raise ApiError(401, "Account is deactivated. Please contact administrator.")

        account.password_hash = hash_password(payload.new_password)
        db.commit()
        # Existing sessions were opened with the old password.
        sessions.clear_sessions(account_key(account))

    logger.info("Password reset for %s", phone)
    return {
        "success": True,
        "message": "Password reset successful. You can now sign in with your new password.",
    }
