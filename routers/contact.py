from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas import CamelIn
from utils import email_sender
from utils.accounts import EMAIL_RE, admin_email
from utils.errors import ApiError, fail_as


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/web/contact", tags=["contact"])


def contact_recipient() -> str:
    return (os.getenv("CONTACT_EMAIL") or "").strip() or admin_email()


class ContactIn(CamelIn):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None


@router.post("")
def submit_contact_form(payload: ContactIn, db: Session = Depends(get_db)):
    name = (payload.name or "").strip()
    email = (payload.email or "").strip()
    message = (payload.message or "").strip()
    if not name:
        raise ApiError(400, "Name is required")
    if not email:
        raise ApiError(400, "Email is required")
    if not message:
        raise ApiError(400, "Message is required")
    if not EMAIL_RE.match(email):
        raise ApiError(400, "Invalid email format")

    to_email = contact_recipient()
    if not to_email:
        logger.error("Contact form submitted but no CONTACT_EMAIL/ADMIN_EMAIL is configured")
        raise ApiError(500, "Contact form is not configured properly. Please try again later.")

    with fail_as("An error occurred while processing your request", db):
        result = email_sender.send_contact_message(
            db,
            to_email=to_email,
            name=name,
            email=email,
            phone=(payload.phone or "").strip() or None,
            message=message,
        )
    if not result.get("success"):
        logger.error("Contact form email failed: %s", result.get("message"))
        raise ApiError(500, "Failed to send your message. Please try again later.")

    logger.info("Contact form message from %s forwarded", email)
    return {"success": True, "message": "Your message has been sent successfully! We'll get back to you soon."}
