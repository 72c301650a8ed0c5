from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class SpeedAnomaly:
    """
    Leitura fora da faixa plausível.
    Não invalida a detecção: só marca para observabilidade.
    """
    t_epoch: float
    group_key: str
    detection_id: str
    speed_kmh: float
    rule_id: str
    rule: str
