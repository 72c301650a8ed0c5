from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping
import math

Op = Literal[">", "<", ">=", "<=", "==", "!="]

VALID_OPS = (">", "<", ">=", "<=", "==", "!=")


@dataclass(frozen=True)
class SpeedRule:
    op: Op
    value: float  # km/h
    rule_id: str
    atol: float = 0.0

    def __post_init__(self):
        if self.op not in VALID_OPS:
            raise ValueError(f"Operador inválido em '{self.rule_id}': {self.op!r}")

    def violated(self, speed_kmh: float) -> bool:
        x = float(speed_kmh)
        if self.op == ">":
            return x > self.value
        if self.op == "<":
            return x < self.value
        if self.op == ">=":
            return x >= self.value
        if self.op == "<=":
            return x <= self.value
        close = math.isclose(x, self.value, abs_tol=self.atol)
        return close if self.op == "==" else not close

    def label(self) -> str:
        return f"speed_kmh {self.op} {self.value:g}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpeedRule":
        return cls(
            op=str(data["op"]),
            value=float(data["value"]),
            rule_id=str(data["rule_id"]),
            atol=float(data.get("atol", 0.0)),
        )


# faixa "sã" 0-300 km/h
DEFAULT_SPEED_RULES = (
    SpeedRule(op="<", value=0.0, rule_id="SPEED_NEGATIVE"),
    SpeedRule(op=">", value=300.0, rule_id="SPEED_GT_300"),
)
