from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from domain.anomalies import SpeedAnomaly
from domain.thresholds import DEFAULT_SPEED_RULES, SpeedRule


@dataclass
class SpeedMonitorConfig:
    cooldown_sec: float = 0.0


class SpeedMonitor:
    """
    Avalia regras de velocidade para cada detecção.
    Não rejeita nada: apenas gera SpeedAnomaly.
    """

    def __init__(
        self,
        rules: Iterable[SpeedRule] = DEFAULT_SPEED_RULES,
        cfg: SpeedMonitorConfig | None = None,
    ):
        self._rules = list(rules)
        self._cfg = cfg or SpeedMonitorConfig()
        self._lock = threading.Lock()
        self._last_emit: Dict[Tuple[str, str], float] = {}

    @property
    def rules(self) -> List[SpeedRule]:
        return list(self._rules)

    def violated_rules(self, speed_kmh: float) -> List[SpeedRule]:
        return [r for r in self._rules if r.violated(speed_kmh)]

    def check(
        self,
        now_epoch: float,
        group_key: str,
        detection_id: str,
        speed_kmh: float,
    ) -> List[SpeedAnomaly]:
        # cooldown só suprime a emissão; violated_rules() continua valendo
        out: List[SpeedAnomaly] = []
        for r in self.violated_rules(speed_kmh):
            if self._cfg.cooldown_sec > 0:
                key = (group_key, r.rule_id)
                with self._lock:
                    last = self._last_emit.get(key)
                    if last is not None and (now_epoch - last) < self._cfg.cooldown_sec:
                        continue
                    self._last_emit[key] = now_epoch

            out.append(
                SpeedAnomaly(
                    t_epoch=now_epoch,
                    group_key=group_key,
                    detection_id=detection_id,
                    speed_kmh=float(speed_kmh),
                    rule_id=r.rule_id,
                    rule=r.label(),
                )
            )

        return out
