"""Tests for decision extraction from AI replies."""

import pytest

from autotrader.ai.parser import (
    DecisionParseError,
    parse_decision,
    parse_decisions,
    split_reply,
)
from autotrader.models import CloseDecision, DecisionAction, OpenDecision, PassiveDecision

OPEN_ENTRY = {
    "action": "open_long",
    "symbol": "btcusdt",
    "leverage": 10,
    "position_size_usd": 500,
    "stop_loss": 95000,
    "take_profit": 110000,
    "reasoning": "breakout",
}


class TestSplitReply:
    """Separating the reasoning trace from the JSON array."""

    def test_fenced_json(self):
        reply = 'Market looks strong.\n\n```json\n[{"action": "wait", "symbol": "BTCUSDT"}]\n```\nDone.'

        cot, json_text = split_reply(reply)

        assert cot == "Market looks strong."
        assert json_text == '[{"action": "wait", "symbol": "BTCUSDT"}]'

    def test_bare_array(self):
        reply = 'Thinking...\n[{"action": "hold", "symbol": "ETHUSDT"}]'

        cot, json_text = split_reply(reply)

        assert cot == "Thinking..."
        assert json_text.startswith("[") and json_text.endswith("]")

    def test_no_array(self):
        with pytest.raises(DecisionParseError):
            split_reply("I would rather not trade today.")


class TestParseDecision:
    """Coercion of one JSON object into a typed Decision."""

    def test_open(self):
        decision = parse_decision(OPEN_ENTRY)

        assert isinstance(decision, OpenDecision)
        assert decision.symbol == "BTCUSDT"
        assert decision.leverage == 10
        assert decision.position_size_usd == 500.0
        assert decision.stop_loss == 95000.0

    def test_numeric_strings_accepted(self):
        entry = dict(OPEN_ENTRY, leverage="5", position_size_usd="250.5")

        decision = parse_decision(entry)

        assert decision.leverage == 5
        assert decision.position_size_usd == 250.5

    def test_close(self):
        decision = parse_decision({"action": "CLOSE_SHORT", "symbol": "ETHUSDT"})

        assert isinstance(decision, CloseDecision)
        assert decision.action is DecisionAction.CLOSE_SHORT

    def test_passive(self):
        assert isinstance(parse_decision({"action": "wait", "symbol": "ALL"}), PassiveDecision)

    @pytest.mark.parametrize(
        "entry",
        [
            {"action": "buy", "symbol": "BTCUSDT"},
            {"action": "hold"},
            dict(OPEN_ENTRY, stop_loss=None),
            dict(OPEN_ENTRY, position_size_usd=0),
            dict(OPEN_ENTRY, leverage=0),
            "open_long",
        ],
    )
    def test_invalid(self, entry):
        with pytest.raises(ValueError):
            parse_decision(entry)


class TestParseDecisions:
    """Array decoding with per-entry rejection."""

    def test_invalid_entries_are_dropped(self):
        text = '[{"action": "wait", "symbol": "BTCUSDT"}, {"action": "fly", "symbol": "X"}]'

        decisions, rejected = parse_decisions(text)

        assert len(decisions) == 1
        assert len(rejected) == 1
        assert rejected[0].startswith("#1:")

    def test_not_json(self):
        with pytest.raises(DecisionParseError):
            parse_decisions("[not json]")

    def test_not_array(self):
        with pytest.raises(DecisionParseError):
            parse_decisions('{"action": "wait"}')
