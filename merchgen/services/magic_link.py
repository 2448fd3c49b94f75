"""Signed resumable access links.

A token is ``<payload>.<signature>`` where payload is the base64url-encoded
compact JSON ``{"sessionId", "email", "timestamp"}`` (timestamp in epoch
milliseconds) and signature is base64url(HMAC-SHA256(secret, payload)).
Both parts are unpadded.

verify_token() never raises. Any malformed, tampered, undecodable, expired
or future-dated token yields None.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any

from merchgen.core.config import get_settings
from merchgen.core.logging import get_logger

logger = get_logger(__name__)

# Tolerated clock skew for tokens minted slightly in the future
MAX_FUTURE_SKEW_MS = 5 * 60 * 1000


@dataclass(frozen=True)
class MagicLinkPayload:
    """Decoded token contents."""

    session_id: str
    email: str
    timestamp: int  # epoch milliseconds


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_b64: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256
    ).digest()
    return _b64encode(digest)


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_token(
    session_id: str,
    email: str,
    secret: str | None = None,
    now_ms: int | None = None,
) -> str:
    """Mint a signed token for a session."""
    payload = {
        "sessionId": session_id,
        "email": email,
        "timestamp": now_ms if now_ms is not None else _now_ms(),
    }
    payload_b64 = _b64encode(
        json.dumps(payload, separators=(",", ":")).encode("utf-8")
    )
    signature = _sign(payload_b64, secret or get_settings().magic_link_secret)
    return f"{payload_b64}.{signature}"


def verify_token(
    token: str,
    secret: str | None = None,
    max_age_ms: int | None = None,
    now_ms: int | None = None,
) -> MagicLinkPayload | None:
    """Validate a token and return its payload, or None when invalid.

    Args:
        token: Token from the magic link
        secret: HMAC secret. Defaults to settings.
        max_age_ms: Reject tokens older than this. Defaults to settings.
        now_ms: Current time in epoch milliseconds. Defaults to the clock.
    """
    settings = get_settings()
    secret = secret or settings.magic_link_secret
    if max_age_ms is None:
        max_age_ms = settings.magic_link_max_age_hours * 60 * 60 * 1000
    now = now_ms if now_ms is not None else _now_ms()

    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    payload_b64, signature = parts

    try:
        expected = _sign(payload_b64, secret)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return None

    try:
        data: Any = json.loads(_b64decode(payload_b64).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    session_id = data.get("sessionId")
    email = data.get("email")
    timestamp = data.get("timestamp")
    if (
        not isinstance(session_id, str)
        or not isinstance(email, str)
        or not isinstance(timestamp, int)
        or isinstance(timestamp, bool)
    ):
        return None

    if now - timestamp > max_age_ms:
        logger.info("Magic link token expired", extra={"session_id": session_id})
        return None
    if timestamp - now > MAX_FUTURE_SKEW_MS:
        logger.warning(
            "Magic link token timestamp in the future", extra={"session_id": session_id}
        )
        return None

    return MagicLinkPayload(session_id=session_id, email=email, timestamp=timestamp)


def build_magic_link(session_id: str, email: str, token: str | None = None) -> str:
    """Full session URL carrying a (fresh unless given) token."""
    base_url = get_settings().public_base_url.rstrip("/")
    token = token or generate_token(session_id, email)
    return f"{base_url}/session/{session_id}?token={token}"
