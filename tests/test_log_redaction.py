"""
Tests for log redaction.
"""

import logging

import pytest

from utils.log_redaction import REDACTION_PLACEHOLDER, RedactingFilter, install_redaction, redact


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))


@pytest.fixture
def captured():
    handler = ListHandler()
    install_redaction([handler])
    log = logging.getLogger("tests.redaction")
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    log.propagate = False
    yield log, handler
    log.removeHandler(handler)


class TestRedact:
    @pytest.mark.parametrize(
        "text, secret",
        [
            ("access_token=abc123def", "abc123def"),
            ('{"refresh_token": "r-9f8e7d"}', "r-9f8e7d"),
            ("Authorization: Bearer sk.live.token", "sk.live.token"),
            ("client_secret=shh-its-secret", "shh-its-secret"),
            ("api_key: key_123", "key_123"),
            ("jwt eyJhbGciOi.eyJzdWIiOi.sig-nature", "eyJhbGciOi"),
        ],
    )
    def test_secrets_are_replaced(self, text, secret):
        result = redact(text)
        assert secret not in result
        assert REDACTION_PLACEHOLDER in result

    def test_plain_text_untouched(self):
        assert redact("YNAB connected for user user-1") == "YNAB connected for user user-1"


class TestFilter:
    def test_redacts_formatted_args(self, captured):
        log, handler = captured
        log.info("provider said %s", {"access_token": "leaky-value"})
        assert "leaky-value" not in handler.lines[0]

    def test_redacts_exception_text(self, captured):
        log, handler = captured
        try:
            raise RuntimeError("refresh_token=super-secret-value")
        except RuntimeError:
            log.exception("refresh blew up")
        assert "super-secret-value" not in handler.lines[0]
        assert "RuntimeError" in handler.lines[0]

    def test_install_is_idempotent(self):
        handler = ListHandler()
        install_redaction([handler])
        install_redaction([handler])
        assert sum(isinstance(f, RedactingFilter) for f in handler.filters) == 1
