"""Append-only decision log and performance replay."""

from autotrader.decision_log.logger import DecisionLogger
from autotrader.decision_log.models import ActionRecord, DecisionRecord

__all__ = ["ActionRecord", "DecisionLogger", "DecisionRecord"]
