from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from database import get_db
from models import Admin, User
from schemas import CamelIn
from utils import email_sender, notifications, sessions
from utils.accounts import (
    EMAIL_RE,
    LOOSE_EMAIL_RE,
    PHONE_RE,
    Account,
    account_exists,
    account_key,
    account_summary,
    admin_email,
    check_password,
    create_token,
    decode_token,
    find_by_email,
    find_by_phone,
    get_account,
    hash_password,
    link_customer,
    mark_customer_verified,
    norm_email,
    remember_device,
    role_of,
)
from utils.effects import defer, side_effect
from utils.errors import ApiError, fail_as
from utils.otp_service import OTP_EXPIRED, OTP_INVALID, append_otp, check_otp, new_otp_entry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mobile", tags=["auth"])
bearer = HTTPBearer(auto_error=False)

ACCOUNT_EXISTS = "Account already exists. Please sign in with your email or phone number and password."
INVALID_CREDENTIALS = "Invalid email/phone number or password"


def _now() -> datetime:
    return datetime.utcnow()


def get_current_account(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Account:
    if not creds or not creds.credentials:
        raise ApiError(401, "Missing Authorization token")
    token = creds.credentials
    try:
        role, account_id = decode_token(token)
    except Exception:
        raise ApiError(401, "Invalid token")
    account = get_account(db, role, account_id)
    if not account:
        raise ApiError(401, "User not found")
    if not sessions.has_session(account_key(account), token):
        raise ApiError(401, "Session expired. Please sign in again.")
    if not account.is_active:
        raise ApiError(401, "Account is deactivated. Please contact administrator.")
    return account


class RegisterIn(CamelIn):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None


@router.post("/register", status_code=201)
def register(payload: RegisterIn, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    if not (payload.email and payload.password and payload.name and payload.phone_number):
        raise ApiError(400, "Email, password, name, and phone number are required")

    email = norm_email(payload.email)
    phone = payload.phone_number.strip()
    if not EMAIL_RE.match(email):
        raise ApiError(400, "Invalid email format")
    if not PHONE_RE.match(phone):
        raise ApiError(400, "Invalid phone number format")

    is_admin = email == admin_email()
    logger.info("Registration for %s as %s", email, "admin" if is_admin else "user")

    with fail_as("Registration failed", db):
        if account_exists(db, email=email, phone_number=phone):
            raise ApiError(400, ACCOUNT_EXISTS)

        entry = new_otp_entry()
        model = Admin if is_admin else User
        account = model(
            email=email,
            password_hash=hash_password(payload.password),
            name=payload.name.strip(),
            phone_number=phone,
            provider="local",
            email_otps=[entry],
        )
        db.add(account)
        db.commit()
        db.refresh(account)

    data = {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "role": role_of(account),
        "otpSent": True,
    }

    customer_id = None
    if not is_admin:
        with side_effect("Customer link", db):
            customer_id = link_customer(db, account, verified=False).id

    defer(
        background_tasks,
        f"OTP email to {email}",
        email_sender.send_registration_otp,
        to_email=email,
        name=data["name"],
        code=entry["otp"],
    )
    if not is_admin:
        defer(
            background_tasks,
            "New user registration alert",
            notifications.send_new_user_registration_alert,
            data["name"],
            email,
            customer_id,
        )

    return {
        "success": True,
        "message": "Registration successful. Please check your email for OTP to verify your account.",
        "data": data,
    }


class VerifyOtpIn(CamelIn):
    email: Optional[str] = None
    otp: Optional[str] = None


def _already_verified() -> dict:
    return {"success": True, "message": "Email already verified", "alreadyVerified": True}


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpIn, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    if not payload.email or not payload.otp:
        raise ApiError(400, "Email and OTP are required")

    with fail_as("OTP verification failed", db):
        account = find_by_email(db, payload.email)
        if not account:
            raise ApiError(404, "User not found")
        if account.is_verified:
            return _already_verified()

        entries = account.email_otps or []
        if not entries:
            raise ApiError(400, "No OTP found. Please request a new OTP.")

        status = check_otp(entries, payload.otp)
        if status == OTP_EXPIRED:
            raise ApiError(400, "OTP has expired. Please request a new OTP.", expired=True)
        if status == OTP_INVALID:
            raise ApiError(400, "Invalid OTP. Please check and try again.")

        account.is_verified = True
        account.email_otps = []
        db.commit()
        db.refresh(account)

    data = {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "isVerified": True,
        "role": role_of(account),
    }
    logger.info("Email verified for %s", account.email)

    if isinstance(account, User):
        with side_effect("Customer verification sync", db):
            mark_customer_verified(db, data["id"])
        defer(
            background_tasks,
            f"Welcome notification for user {data['id']}",
            notifications.send_welcome_notification,
            data["id"],
            data["name"],
        )

    return {"success": True, "message": "Email verified successfully", "data": data}


class ResendOtpIn(CamelIn):
    email: Optional[str] = None


@router.post("/resend-otp")
def resend_otp(payload: ResendOtpIn, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    if not payload.email:
        raise ApiError(400, "Email is required")

    with fail_as("Failed to resend OTP", db):
        account = find_by_email(db, payload.email)
        if not account:
            raise ApiError(404, "User not found")
        if account.is_verified:
            return _already_verified()

        code, entries = append_otp(account.email_otps)
        account.email_otps = entries
        db.commit()
        email, name = account.email, account.name

    defer(background_tasks, f"Resend OTP email to {email}", email_sender.send_resend_otp, to_email=email, name=name, code=code)
    return {"success": True, "message": "New OTP sent to your email", "data": {"email": email, "otpSent": True}}


class LoginIn(CamelIn):
    identifier: Optional[str] = None
    # Older app builds send the identifier as "email".
    email: Optional[str] = None
    password: Optional[str] = None
    fcm_token: Optional[str] = None


@router.post("/login")
def login(payload: LoginIn, user_agent: Optional[str] = Header(None), db: Session = Depends(get_db)):
    identifier = (payload.identifier or payload.email or "").strip()
    if not identifier or not payload.password:
        raise ApiError(400, "Email or phone number and password are required")

    with fail_as("Login failed", db):
        if LOOSE_EMAIL_RE.search(identifier):
            account = find_by_email(db, identifier)
        else:
            account = find_by_phone(db, identifier)

        # Not-found and wrong-password share one message; the checks in between do not.
        if not account:
            raise ApiError(401, INVALID_CREDENTIALS)
        if not account.is_active:
            raise ApiError(401, "Account is deactivated. Please contact administrator.")
        if not account.is_verified:
            raise ApiError(
                401,
                "Please verify your email before signing in. Check your inbox for the OTP.",
                needsVerification=True,
            )
        if not account.password_hash and account.provider not in ("local", "phone"):
            raise ApiError(401, "Please sign in with Google", useGoogleAuth=True)
        if not check_password(payload.password, account.password_hash):
            raise ApiError(401, INVALID_CREDENTIALS)

        account.last_login = _now()
        if payload.fcm_token:
            remember_device(account, payload.fcm_token, user_agent)
        db.commit()
        db.refresh(account)

        token = create_token(account)
        sessions.add_session(account_key(account), token)

    return {
        "success": True,
        "message": "Login successful",
        "data": {"token": token, "user": account_summary(account)},
    }


@router.get("/me")
def me(account: Account = Depends(get_current_account)):
    return {"success": True, "data": account_summary(account)}


@router.get("/sessions")
def list_my_sessions(account: Account = Depends(get_current_account)):
    return {"success": True, "data": sessions.list_sessions(account_key(account))}


@router.post("/logout")
def logout(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    account: Account = Depends(get_current_account),
):
    sessions.remove_session(account_key(account), creds.credentials)
    return {"success": True, "message": "Logged out"}
