"""Decision extraction from a free-form AI reply.

The reply is reasoning text followed by a JSON array of decisions, either in
a ```json fence or bare. Text before the array is kept as the
chain-of-thought trace.
"""

import json
import re

from autotrader.logging import get_logger
from autotrader.models import (
    CloseDecision,
    Decision,
    DecisionAction,
    OpenDecision,
    PassiveDecision,
)

logger = get_logger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)


class DecisionParseError(ValueError):
    """Raised when no JSON decision array can be decoded from the reply."""


def split_reply(reply: str) -> tuple[str, str]:
    """Return ``(cot_trace, json_text)``.

    Raises:
        DecisionParseError: If the reply contains no JSON array.
    """
    match = _FENCE.search(reply)
    if match:
        return reply[: match.start()].strip(), match.group(1)

    start = reply.find("[")
    end = reply.rfind("]")
    if start == -1 or end <= start:
        raise DecisionParseError("no JSON decision array in reply")
    return reply[:start].strip(), reply[start : end + 1]


def _number(entry: dict, key: str) -> float:
    value = entry.get(key)
    if value is None or value == "":
        raise ValueError(f"missing {key}")
    return float(value)


def parse_decision(entry: dict) -> Decision:
    """Coerce one JSON object into a typed Decision.

    Raises:
        ValueError: For unknown actions, missing fields or invalid values.
    """
    if not isinstance(entry, dict):
        raise ValueError("decision entry is not an object")

    try:
        action = DecisionAction(str(entry.get("action", "")).strip().lower())
    except ValueError:
        raise ValueError(f"unknown action: {entry.get('action')!r}") from None

    symbol = str(entry.get("symbol") or "").strip().upper()
    if not symbol:
        raise ValueError("missing symbol")
    reasoning = str(entry.get("reasoning") or "")

    if action.is_open:
        return OpenDecision(
            action=action,
            symbol=symbol,
            reasoning=reasoning,
            leverage=int(_number(entry, "leverage")),
            position_size_usd=_number(entry, "position_size_usd"),
            stop_loss=_number(entry, "stop_loss"),
            take_profit=_number(entry, "take_profit"),
        )
    if action.is_close:
        return CloseDecision(action=action, symbol=symbol, reasoning=reasoning)
    return PassiveDecision(action=action, symbol=symbol, reasoning=reasoning)


def parse_decisions(json_text: str) -> tuple[list[Decision], list[str]]:
    """Decode the array and coerce each entry.

    Returns:
        The valid decisions and one error message per rejected entry.

    Raises:
        DecisionParseError: If the text is not a JSON array.
    """
    try:
        raw = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise DecisionParseError(f"invalid decision JSON: {e}") from e
    if not isinstance(raw, list):
        raise DecisionParseError("decision JSON is not an array")

    decisions: list[Decision] = []
    rejected: list[str] = []
    for index, entry in enumerate(raw):
        try:
            decisions.append(parse_decision(entry))
        except (ValueError, TypeError) as e:
            logger.warning("ai_decision_rejected", index=index, error=str(e))
            rejected.append(f"#{index}: {e}")
    return decisions, rejected
