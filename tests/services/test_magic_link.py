"""Tests for signed session access tokens.

verify_token must return the payload for a fresh, untampered token and
None for anything else, without raising.
"""

import base64
import json
from unittest.mock import patch

import pytest

from merchgen.services.magic_link import (
    MagicLinkPayload,
    build_magic_link,
    generate_token,
    verify_token,
)

SECRET = "unit-test-secret"
NOW_MS = 1_760_000_000_000
DAY_MS = 24 * 60 * 60 * 1000


def _token(now_ms: int = NOW_MS, **kwargs) -> str:
    return generate_token("session-123", "owner@example.com", secret=SECRET, now_ms=now_ms, **kwargs)


class TestTokenFormat:
    """Test the token wire format."""

    def test_token_has_two_unpadded_parts(self) -> None:
        token = _token()

        payload_b64, signature = token.split(".")
        assert "=" not in token
        assert payload_b64 and signature

    def test_payload_is_compact_json(self) -> None:
        payload_b64 = _token().split(".")[0]
        raw = base64.urlsafe_b64decode(payload_b64 + "=" * (-len(payload_b64) % 4))

        assert json.loads(raw) == {
            "sessionId": "session-123",
            "email": "owner@example.com",
            "timestamp": NOW_MS,
        }
        assert b" " not in raw


class TestVerifyToken:
    """Test verify_token accept/reject paths."""

    def test_fresh_token_round_trips(self) -> None:
        payload = verify_token(_token(), secret=SECRET, max_age_ms=DAY_MS, now_ms=NOW_MS + 1000)

        assert payload == MagicLinkPayload(
            session_id="session-123", email="owner@example.com", timestamp=NOW_MS
        )

    def test_wrong_secret_rejected(self) -> None:
        assert verify_token(_token(), secret="other", max_age_ms=DAY_MS, now_ms=NOW_MS) is None

    def test_expired_token_rejected(self) -> None:
        token = _token()

        assert verify_token(token, secret=SECRET, max_age_ms=DAY_MS, now_ms=NOW_MS + DAY_MS) is not None
        assert verify_token(token, secret=SECRET, max_age_ms=DAY_MS, now_ms=NOW_MS + DAY_MS + 1) is None

    def test_future_dated_token_rejected(self) -> None:
        token = _token(now_ms=NOW_MS + 10 * 60 * 1000)

        assert verify_token(token, secret=SECRET, max_age_ms=DAY_MS, now_ms=NOW_MS) is None

    def test_tampered_payload_rejected(self) -> None:
        payload_b64, signature = _token().split(".")
        forged = base64.urlsafe_b64encode(
            json.dumps(
                {"sessionId": "other", "email": "x@example.com", "timestamp": NOW_MS}
            ).encode()
        ).rstrip(b"=").decode()

        assert verify_token(f"{forged}.{signature}", secret=SECRET, now_ms=NOW_MS) is None

    @pytest.mark.parametrize(
        "token",
        ["", "no-dot", "a.b.c", ".sig", "payload.", "!!!.???", "é.ü"],
    )
    def test_malformed_tokens_rejected(self, token: str) -> None:
        assert verify_token(token, secret=SECRET, now_ms=NOW_MS) is None

    def test_validly_signed_garbage_payload_rejected(self) -> None:
        """A correct signature over a non-object payload is still invalid."""
        from merchgen.services.magic_link import _b64encode, _sign

        payload_b64 = _b64encode(b"[1, 2, 3]")
        token = f"{payload_b64}.{_sign(payload_b64, SECRET)}"

        assert verify_token(token, secret=SECRET, now_ms=NOW_MS) is None


class TestBuildMagicLink:
    """Test link construction."""

    def test_link_points_at_session_with_token(self, test_settings) -> None:
        with patch(
            "merchgen.services.magic_link.get_settings", return_value=test_settings
        ):
            link = build_magic_link("session-123", "owner@example.com")

            assert link.startswith("https://merch.example.com/session/session-123?token=")
            token = link.split("token=", 1)[1]
            payload = verify_token(token)
            assert payload is not None
            assert payload.session_id == "session-123"
