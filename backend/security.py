import base64
import hashlib
import hmac
import json
import time
from typing import Any

from fastapi import Depends, Header, HTTPException

import backend.config as config

# Tokens are minted by the external credential service, which shares
# GEOATTEND_SIGNING_KEY. `issue_session_token` mirrors its format.
DEFAULT_TOKEN_TTL_SECONDS = 12 * 60 * 60


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        config.SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(
    subject: str,
    *,
    role: str,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
) -> tuple[str, dict[str, Any]]:
    now = int(time.time())
    payload = {
        "sub": subject.strip(),
        "role": role.strip().lower(),
        "iat": now,
        "exp": now + ttl_seconds,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    if not hmac.compare_digest(signature, expected):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    role = payload.get("role")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(role, str) or not role.strip():
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None

    return payload


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    payload = decode_session_token(token.strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return payload


def _check_role(session: dict[str, Any], allowed: list[str]) -> dict[str, Any]:
    role = str(session.get("role", "")).strip().lower()
    if role not in {r.lower() for r in allowed}:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return session


def require_issuer(session: dict[str, Any] = Depends(require_session)) -> dict[str, Any]:
    return _check_role(session, config.ISSUER_ROLES)


def require_claimant(session: dict[str, Any] = Depends(require_session)) -> dict[str, Any]:
    return _check_role(session, config.CLAIMANT_ROLES)


def ensure_issuer_owns(session: dict[str, Any], issuer_id: str | None) -> None:
    role = str(session.get("role", "")).strip().lower()
    if role in {r.lower() for r in config.ADMIN_ROLES}:
        return
    if issuer_id != session.get("sub"):
        raise HTTPException(status_code=403, detail="Unauthorized")
