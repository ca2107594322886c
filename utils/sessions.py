"""
Active-session tracker.

Records which signed tokens belong to which account so sessions can be
listed and revoked. Uses Redis when REDIS_URL is set, otherwise an
in-process dict (single-worker dev setups).
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from typing import Dict, List

import redis

SESSION_TTL_SECONDS = int(os.getenv("JWT_EXP_MIN", "10080")) * 60

_MEM: Dict[str, Dict[str, dict]] = {}


def _redis_client():
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    return redis.Redis.from_url(url, decode_responses=True)


def _key(account_key: str) -> str:
    return f"sessions:{account_key}"


def _fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _prune_memory(now: float) -> None:
    # Expired records are dropped here; nothing else removes them in-process.
    for key in list(_MEM):
        live = {fp: rec for fp, rec in _MEM[key].items() if rec["expiresAt"] > now}
        if live:
            _MEM[key] = live
        else:
            del _MEM[key]


def add_session(account_key: str, token: str) -> None:
    now = time.time()
    record = {"createdAt": now, "expiresAt": now + SESSION_TTL_SECONDS}
    fp = _fingerprint(token)

    r = _redis_client()
    if r:
        key = _key(account_key)
        # The hash TTL is refreshed on every login, so stale fields are dropped by hand.
        stale = [f for f, raw in (r.hgetall(key) or {}).items() if json.loads(raw)["expiresAt"] <= now]
        if stale:
            r.hdel(key, *stale)
        r.hset(key, fp, json.dumps(record))
        r.expire(key, SESSION_TTL_SECONDS)
        return
    _prune_memory(now)
    _MEM.setdefault(account_key, {})[fp] = record


def _records(account_key: str) -> Dict[str, dict]:
    r = _redis_client()
    if r:
        return {fp: json.loads(raw) for fp, raw in (r.hgetall(_key(account_key)) or {}).items()}
    return dict(_MEM.get(account_key, {}))


def has_session(account_key: str, token: str) -> bool:
    rec = _records(account_key).get(_fingerprint(token))
    return bool(rec) and rec["expiresAt"] > time.time()


def list_sessions(account_key: str) -> List[dict]:
    now = time.time()
    return [
        {"id": fp[:16], **rec}
        for fp, rec in sorted(_records(account_key).items(), key=lambda kv: kv[1]["createdAt"], reverse=True)
        if rec["expiresAt"] > now
    ]


def remove_session(account_key: str, token: str) -> bool:
    fp = _fingerprint(token)
    r = _redis_client()
    if r:
        return bool(r.hdel(_key(account_key), fp))
    return _MEM.get(account_key, {}).pop(fp, None) is not None


def clear_sessions(account_key: str) -> None:
    r = _redis_client()
    if r:
        r.delete(_key(account_key))
        return
    _MEM.pop(account_key, None)
