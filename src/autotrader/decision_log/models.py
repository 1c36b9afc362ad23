"""Decision record types written once per cycle."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields


@dataclass
class ActionRecord:
    """Execution outcome of one intent."""

    action: str
    symbol: str
    quantity: float = 0.0
    leverage: int = 0
    price: float = 0.0
    order_id: str = ""
    timestamp: str = ""
    success: bool = False
    error: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ActionRecord:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class DecisionRecord:
    """Everything one cycle saw, asked, received and did."""

    timestamp: str = ""
    cycle_number: int = 0
    account_state: dict = field(default_factory=dict)
    positions: list[dict] = field(default_factory=list)
    candidate_coins: list[str] = field(default_factory=list)
    system_prompt: str = ""
    input_prompt: str = ""
    cot_trace: str = ""
    decision_json: str = ""
    decisions: list[ActionRecord] = field(default_factory=list)
    execution_log: list[str] = field(default_factory=list)
    success: bool = True
    error_message: str = ""

    def fail(self, message: str) -> None:
        self.success = False
        self.error_message = message

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> DecisionRecord:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["decisions"] = [ActionRecord.from_dict(a) for a in data.get("decisions") or []]
        return cls(**values)
