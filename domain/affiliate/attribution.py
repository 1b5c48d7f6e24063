"""
Attribution cookie codec and click helpers.

The cookie is base64(JSON {affiliateId, sessionId, expiresAt}) with expiresAt in
epoch milliseconds. It is not signed: treat its content as client-controlled and
use it only to pick which affiliate a completed purchase is credited to.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


@dataclass(frozen=True)
class AttributionCookie:
    affiliate_id: str
    session_id: str
    expires_at: int  # epoch ms

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= to_epoch_ms(now or datetime.now(timezone.utc))


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def new_session_id() -> str:
    return secrets.token_hex(16)


def hash_ip(ip_address: Optional[str], salt: str) -> Optional[str]:
    if not ip_address:
        return None
    return hashlib.sha256(f"{salt}:{ip_address}".encode("utf-8")).hexdigest()


def resolve_code(raw_code: str, *, ff_prefix: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Normalise an affiliate code.

    Returns ``(code, base_code)``: ``code`` is the upper-cased input and
    ``base_code`` is the code with the friends-and-family prefix stripped, or
    None when the prefix does not apply. Callers try ``code`` first so an
    affiliate whose own code starts with the prefix still matches exactly.
    """
    code = (raw_code or "").strip().upper()
    if ff_prefix:
        prefix = ff_prefix.upper()
        if code.startswith(prefix) and len(code) > len(prefix):
            return code, code[len(prefix):]
    return code, None


def build_cookie(
    affiliate_id: str,
    session_id: str,
    *,
    duration_days: int,
    now: Optional[datetime] = None,
) -> AttributionCookie:
    now = now or datetime.now(timezone.utc)
    return AttributionCookie(
        affiliate_id=affiliate_id,
        session_id=session_id,
        expires_at=to_epoch_ms(now + timedelta(days=duration_days)),
    )


def encode_cookie(cookie: AttributionCookie) -> str:
    payload = {
        "affiliateId": cookie.affiliate_id,
        "sessionId": cookie.session_id,
        "expiresAt": cookie.expires_at,
    }
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_cookie(value: Optional[str]) -> Optional[AttributionCookie]:
    """Absent or malformed cookies mean "no attribution", never an error."""
    if not value:
        return None
    try:
        data = json.loads(base64.b64decode(value.encode("ascii"), validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    affiliate_id = data.get("affiliateId")
    session_id = data.get("sessionId")
    expires_at = data.get("expiresAt")
    if not isinstance(affiliate_id, str) or not isinstance(session_id, str):
        return None
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        return None
    # json accepts NaN and Infinity literals
    if isinstance(expires_at, float) and not math.isfinite(expires_at):
        return None
    if not affiliate_id or not session_id:
        return None
    return AttributionCookie(affiliate_id=affiliate_id, session_id=session_id, expires_at=int(expires_at))


def active_cookie(value: Optional[str], now: Optional[datetime] = None) -> Optional[AttributionCookie]:
    cookie = decode_cookie(value)
    if cookie is None or cookie.is_expired(now):
        return None
    return cookie


def attribution_cookie_for(
    existing: Optional[str],
    affiliate_id: str,
    session_id: str,
    *,
    duration_days: int,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Encoded cookie for a new click, or None when an unexpired one already exists (first click wins)."""
    if active_cookie(existing, now) is not None:
        return None
    return encode_cookie(build_cookie(affiliate_id, session_id, duration_days=duration_days, now=now))
