from __future__ import annotations

import os
import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Tuple


OTP_EXP_MIN = int(os.getenv("OTP_EXP_MINUTES", "10"))
OTP_HISTORY_LIMIT = int(os.getenv("OTP_HISTORY_LIMIT", "5"))

OTP_VALID = "valid"
OTP_EXPIRED = "expired"
OTP_INVALID = "invalid"


def _now() -> datetime:
    return datetime.utcnow()


def _gen_otp() -> str:
    return f"{100000 + secrets.randbelow(900000)}"


def new_otp_entry(*, now: Optional[datetime] = None) -> dict:
    """A fresh {otp, createdAt, expiresAt} entry expiring OTP_EXP_MIN minutes after creation."""
    now = now or _now()
    return {
        "otp": _gen_otp(),
        "createdAt": now.isoformat(),
        "expiresAt": (now + timedelta(minutes=OTP_EXP_MIN)).isoformat(),
    }


def append_otp(entries: Optional[List[dict]], *, now: Optional[datetime] = None) -> Tuple[str, List[dict]]:
    """
    Issue a new code on top of the existing history.

    Keeps the newest OTP_HISTORY_LIMIT - 1 prior entries and appends the new
    one, so the list never grows past OTP_HISTORY_LIMIT. Returns (code, entries).
    """
    entry = new_otp_entry(now=now)
    history = list(entries or [])
    keep = OTP_HISTORY_LIMIT - 1
    history = history[-keep:] if keep > 0 else []
    history.append(entry)
    return entry["otp"], history


def check_otp(entries: Optional[List[dict]], otp: str, *, now: Optional[datetime] = None) -> str:
    """
    Scan newest to oldest for a matching, unexpired code.

    Returns OTP_VALID, OTP_EXPIRED (the code was issued but every matching
    entry is past its expiry) or OTP_INVALID (the code was never issued).
    """
    otp = (otp or "").strip()
    now = now or _now()
    history = list(entries or [])

    for entry in reversed(history):
        if secrets_equal(str(entry.get("otp", "")), otp) and now < _parse(entry.get("expiresAt")):
            return OTP_VALID

    if any(secrets_equal(str(entry.get("otp", "")), otp) for entry in history):
        return OTP_EXPIRED
    return OTP_INVALID


def _parse(value: Optional[str]) -> datetime:
    if not value:
        return datetime.min
    # Stored as naive UTC; tolerate a trailing "Z" from older clients.
    return datetime.fromisoformat(value.rstrip("Z"))


def secrets_equal(a: str, b: str) -> bool:
    # Constant-time compare
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a.encode("utf-8"), b.encode("utf-8")):
        result |= x ^ y
    return result == 0
