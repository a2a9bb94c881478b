import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from photovouchers.core.config import settings

VOUCHER_DOWNLOAD_TOKEN_TYPE = "voucher_download"


def create_voucher_download_token(
    session_id: str, ttl_seconds: int, *, now: datetime | None = None
) -> tuple[str, datetime]:
    # Whole seconds so the returned expiry equals the signed exp claim.
    issued_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    expires_at = issued_at + timedelta(seconds=int(ttl_seconds))
    to_encode = {
        "type": VOUCHER_DOWNLOAD_TOKEN_TYPE,
        "sid": session_id,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, expires_at


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def voucher_session_from_token(token: str, *, now: datetime | None = None) -> str | None:
    payload = decode_token((token or "").strip())
    if not payload or payload.get("type") != VOUCHER_DOWNLOAD_TOKEN_TYPE:
        return None
    # jose still accepts a token during the second after exp.
    moment = now or datetime.now(timezone.utc)
    try:
        expires = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        return None
    if moment.timestamp() >= expires:
        return None
    session_id = str(payload.get("sid") or "").strip()
    return session_id or None


def security_code_check(sequence: int) -> str:
    key = settings.secret_key.encode("utf-8")
    digest = hmac.new(key, f"voucher:{int(sequence)}".encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:4].upper()


def admin_token_matches(candidate: str | None) -> bool:
    expected = (settings.admin_token or "").strip()
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.strip().encode("utf-8"))
