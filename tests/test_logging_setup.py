"""Tests for log redaction and per-trader context binding."""

import structlog

from autotrader.logging import REDACTED, bind_trader, redact_secrets, unbind_trader


class TestRedaction:
    """Credential values never reach the renderer."""

    def test_top_level_keys_masked(self):
        event = redact_secrets(None, "info", {"event": "login", "api_key": "k-123", "Passphrase": "p"})

        assert event["api_key"] == REDACTED
        assert event["Passphrase"] == REDACTED
        assert event["event"] == "login"

    def test_nested_headers_masked(self):
        event = redact_secrets(
            None, "debug", {"event": "request", "headers": {"OK-ACCESS-SIGN": "sig", "Accept": "application/json"}}
        )

        assert event["headers"] == {"OK-ACCESS-SIGN": REDACTED, "Accept": "application/json"}

    def test_empty_values_left_alone(self):
        assert redact_secrets(None, "info", {"event": "x", "secret_key": ""})["secret_key"] == ""


class TestTraderBinding:
    """trader_id follows the current context."""

    def test_bind_and_unbind(self):
        structlog.contextvars.clear_contextvars()

        bind_trader("trader-1")
        assert structlog.contextvars.get_contextvars() == {"trader_id": "trader-1"}

        unbind_trader()
        assert structlog.contextvars.get_contextvars() == {}
