from __future__ import annotations

import logging
import os
from typing import Callable, Optional

import firebase_admin
from firebase_admin import auth, credentials

logger = logging.getLogger(__name__)

_APP_NAME = "retail-hub"


class PhoneTokenError(Exception):
    pass


def get_firebase_app() -> Optional[firebase_admin.App]:
    """
    Lazily initialise the Firebase Admin app from a service-account file.

    Returns None when no credentials are configured, so callers can report
    "not configured" instead of crashing at import time.
    """
    try:
        return firebase_admin.get_app(_APP_NAME)
    except ValueError:
        pass

    creds_path = os.getenv("FIREBASE_CREDENTIALS") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not creds_path or not os.path.exists(creds_path):
        return None
    try:
        return firebase_admin.initialize_app(credentials.Certificate(creds_path), name=_APP_NAME)
    except ValueError:
        # Initialised concurrently by another request.
        return firebase_admin.get_app(_APP_NAME)


def verify_phone_token(id_token: str) -> dict:
    """
    Verify a Firebase ID token minted after client-side SMS verification.

    Returns {"phone_number": "+91...", "uid": "..."}; raises PhoneTokenError.
    """
    app = get_firebase_app()
    if app is None:
        raise PhoneTokenError("Firebase is not configured")
    try:
        decoded = auth.verify_id_token(id_token, app=app)
    except Exception as exc:
        raise PhoneTokenError(str(exc)) from exc
    return {"phone_number": decoded.get("phone_number"), "uid": decoded.get("uid")}


PhoneVerifier = Callable[[str], dict]


def get_phone_verifier() -> PhoneVerifier:
    # FastAPI dependency; tests override it with a fake.
    return verify_phone_token
