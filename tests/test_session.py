"""
Tests for identity-provider session token verification.
"""

import pytest

from auth.session import create_session_token, get_session, verify_session_token

SECRET = "session-secret-0123456789abcdef-xyz"


class TestVerify:
    def test_valid_token(self):
        token = create_session_token("user-1", "one@example.com", SECRET)
        session = verify_session_token(token, SECRET)
        assert session.user.id == "user-1"
        assert session.user.email == "one@example.com"

    def test_wrong_secret(self):
        token = create_session_token("user-1", "one@example.com", SECRET)
        assert verify_session_token(token, "another-secret") is None

    def test_expired(self):
        token = create_session_token("user-1", "one@example.com", SECRET, ttl_seconds=-1)
        assert verify_session_token(token, SECRET) is None

    def test_tampered_payload(self):
        token = create_session_token("user-1", "one@example.com", SECRET)
        other = create_session_token("user-2", "two@example.com", SECRET)
        forged = other.split(".")[0] + "." + token.split(".")[1]
        assert verify_session_token(forged, SECRET) is None

    @pytest.mark.parametrize("token", ["", "no-dot", "!!!.abc", "e30=.deadbeef"])
    def test_garbage(self, token):
        assert verify_session_token(token, SECRET) is None


class TestGetSession:
    def test_bearer_header(self):
        token = create_session_token("user-1", "one@example.com", SECRET)
        session = get_session({"authorization": f"Bearer {token}"}, SECRET)
        assert session.user.id == "user-1"

    def test_cookie(self):
        token = create_session_token("user-1", "one@example.com", SECRET)
        session = get_session({"cookie": f"theme=dark; session_token={token}"}, SECRET)
        assert session.user.id == "user-1"

    def test_bearer_takes_precedence(self):
        header_token = create_session_token("user-1", "one@example.com", SECRET)
        cookie_token = create_session_token("user-2", "two@example.com", SECRET)
        session = get_session(
            {"authorization": f"Bearer {header_token}", "cookie": f"session_token={cookie_token}"},
            SECRET,
        )
        assert session.user.id == "user-1"

    def test_no_credentials(self):
        assert get_session({}, SECRET) is None
        assert get_session({"cookie": "theme=dark"}, SECRET) is None
        assert get_session({"authorization": "Basic dXNlcjpwYXNz"}, SECRET) is None
