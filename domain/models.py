from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Tuple

LINE_CROSSED = "line_crossed"


@dataclass(frozen=True)
class LineCrossingEvent:
    device: str
    key: str
    timestamp: Optional[int]  # epoch ms; None = ausente/inválido
    line: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def is_line_crossing(self) -> bool:
        return self.key == LINE_CROSSED and self.timestamp is not None

    @property
    def trigger_key(self) -> str:
        return f"{self.device}:{self.event_id}:{self.timestamp}"


@dataclass(frozen=True)
class AlarmContext:
    name: str
    sources: Tuple[str, ...] = ()

    @property
    def group_key(self) -> str:
        return f"{self.name}:{','.join(sorted(self.sources))}"


@dataclass(frozen=True)
class Delivery:
    alarm: AlarmContext
    triggers: Tuple[LineCrossingEvent, ...] = ()

    def candidates(self) -> list[LineCrossingEvent]:
        return [ev for ev in self.triggers if ev.is_line_crossing]


@dataclass(frozen=True)
class PendingRecord:
    event: LineCrossingEvent
    group_key: str
    trigger_key: str
    received_at: float  # epoch s (relógio do serviço, não do evento)

    def age(self, now_epoch: float) -> float:
        return now_epoch - self.received_at


@dataclass(frozen=True)
class MatchedPair:
    first: LineCrossingEvent
    second: LineCrossingEvent
    group_key: str
    source: str  # "batch" | "pending"

    @classmethod
    def ordered(
        cls,
        a: LineCrossingEvent,
        b: LineCrossingEvent,
        *,
        group_key: str,
        source: str,
    ) -> "MatchedPair":
        first, second = sorted((a, b), key=lambda ev: ev.timestamp)
        return cls(first=first, second=second, group_key=group_key, source=source)


@dataclass(frozen=True)
class EventSummary:
    device: str
    line: Optional[str]
    timestamp: int
    event_id: Optional[str]

    @classmethod
    def of(cls, ev: LineCrossingEvent) -> "EventSummary":
        return cls(device=ev.device, line=ev.line, timestamp=int(ev.timestamp), event_id=ev.event_id)


@dataclass(frozen=True)
class SpeedReading:
    speed_kmh: float
    speed_ms: float
    time_diff_seconds: float
    time_diff_ms: int
    line_distance_m: float
    first_event: EventSummary
    second_event: EventSummary


@dataclass(frozen=True)
class Detection:
    id: str
    timestamp: str  # ISO-8601 UTC do momento do casamento
    alarm_name: str
    group_key: str
    match_source: str
    reading: SpeedReading
    out_of_range: bool = False
    anomaly_rules: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["anomaly_rules"] = list(self.anomaly_rules)
        return out


@dataclass(frozen=True)
class PendingStats:
    pending_count: int
    groups: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"pending_count": self.pending_count, "groups": dict(self.groups)}


@dataclass(frozen=True)
class DeliveryOutcome:
    status: str  # "ignored" | "pending" | "matched" | "invalid"
    detection: Optional[Detection] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "detection": self.detection.to_dict() if self.detection is not None else None,
        }
