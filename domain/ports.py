from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .models import Detection
from .anomalies import SpeedAnomaly


class Clock(Protocol):
    def now_epoch(self) -> float: ...


# -----------------------------
# Saídas de detecção (console / HTTP / etc.)
# -----------------------------

class DetectionSink(Protocol):
    def publish(self, detection: Detection) -> None: ...


class AnomalySink(Protocol):
    def publish(self, anomaly: SpeedAnomaly) -> None: ...


# -----------------------------
# Persistência
# -----------------------------

class DetectionStore(Protocol):
    def add(self, detection: Detection) -> None: ...

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]: ...


class WebhookLog(Protocol):
    def append(self, entry: Dict[str, Any]) -> None:
        """Grava o registro bruto do webhook. Levanta OSError se falhar."""
        ...
