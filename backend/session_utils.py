import base64
import hashlib
import hmac
import json
import time
from typing import Any

import config
from models import Principal, normalize_identity, normalize_wallet


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("ascii"))


def _canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def _session_secret(secret: str | None = None) -> bytes:
    secret = secret or config.SESSION_SECRET
    if not secret:
        raise RuntimeError("SESSION_SECRET is required")
    return secret.encode("utf-8")


def create_session_token(principal: Principal, ttl_seconds: int = 3600, secret: str | None = None) -> str:
    payload = {
        "id": principal.id,
        "identity": normalize_identity(principal.identity),
        "wallet_address": normalize_wallet(principal.wallet_address),
        "is_admin": bool(principal.is_admin),
        "exp": int(time.time()) + int(ttl_seconds),
    }
    payload_part = _b64url_encode(_canonical_json(payload).encode("utf-8"))
    signature = hmac.new(_session_secret(secret), payload_part.encode("ascii"), hashlib.sha256).digest()
    return f"{payload_part}.{_b64url_encode(signature)}"


def verify_session_token(token: str, secret: str | None = None) -> dict[str, Any]:
    try:
        payload_part, signature_part = token.split(".", 1)
    except ValueError as exc:
        raise ValueError("Invalid session token format") from exc

    expected = hmac.new(_session_secret(secret), payload_part.encode("ascii"), hashlib.sha256).digest()
    try:
        provided = _b64url_decode(signature_part)
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Invalid session token signature") from exc
    if not hmac.compare_digest(expected, provided):
        raise ValueError("Invalid session token signature")

    payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    if int(payload.get("exp", 0)) < int(time.time()):
        raise ValueError("Session token expired")
    return payload


def principal_from_token(token: str, secret: str | None = None) -> Principal:
    payload = verify_session_token(token, secret=secret)
    try:
        return Principal(
            id=int(payload["id"]),
            identity=str(payload["identity"]),
            wallet_address=str(payload["wallet_address"]),
            is_admin=bool(payload.get("is_admin", False)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Session token is missing principal claims") from exc
