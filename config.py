from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from domain.thresholds import DEFAULT_SPEED_RULES, SpeedRule

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_ENV_VAR = "SPEEDTRAP_CONFIG"

LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})
LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


@dataclass(frozen=True)
class StorageConfig:
    data_dir: str = "data"
    max_detections: int = 1000
    webhook_log_max_bytes: int = 50 * 1024 * 1024

    @property
    def detections_path(self) -> Path:
        return Path(self.data_dir) / "detections.json"

    @property
    def webhooks_path(self) -> Path:
        return Path(self.data_dir) / "webhooks.jsonl"


@dataclass(frozen=True)
class SpeedMonitorConfig:
    enabled: bool = True

    csv_path: str | None = None  # None = só loga
    queue_max: int = 20000
    drop_on_full: bool = True
    flush_every_n: int = 200
    flush_every_sec: float = 2.0
    cooldown_sec: float = 0.0

    rules: tuple[SpeedRule, ...] = DEFAULT_SPEED_RULES


@dataclass(frozen=True)
class AppConfig:
    hostname: str = "0.0.0.0"
    port: int = 3001

    line_distance_m: float = 10.0
    match_window_sec: float = 30.0
    sweep_interval_sec: float = 60.0

    log_level: str = "INFO"

    storage: StorageConfig = field(default_factory=StorageConfig)
    speed_monitor: SpeedMonitorConfig = field(default_factory=SpeedMonitorConfig)


def _opt(d: Mapping[str, Any], path: str, default: Any) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            return default
        cur = cur[part]
    return cur


def _positive(value: Any, path: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Config inválida: '{path}' deve ser numérico, veio {value!r}.") from e
    if out <= 0:
        raise ValueError(f"Config inválida: '{path}' deve ser > 0, veio {out}.")
    return out


def _log_level(value: Any) -> str:
    # mesmos nomes que o uvicorn aceita (em minúsculas)
    level = str(value).strip().upper()
    level = LOG_LEVEL_ALIASES.get(level, level)
    if level not in LOG_LEVELS:
        raise ValueError(f"Config inválida: 'log_level' deve ser um de {sorted(LOG_LEVELS)}, veio {value!r}.")
    return level


def _to_rules(x: Any, path: str) -> tuple[SpeedRule, ...]:
    """
    Espera:
      speed_monitor:
        rules:
          - op: ">"
            value: 300
            rule_id: "SPEED_GT_300"
    """
    if x is None:
        return DEFAULT_SPEED_RULES
    if not isinstance(x, list):
        raise ValueError(f"Config inválida: '{path}' deve ser uma lista de regras.")

    parsed: list[SpeedRule] = []
    for i, r in enumerate(x):
        if not isinstance(r, Mapping):
            raise ValueError(f"Config inválida: '{path}[{i}]' deve ser um objeto.")
        if r.get("op") is None or r.get("value") is None or r.get("rule_id") is None:
            raise ValueError(f"Config inválida: '{path}[{i}]' precisa de op, value, rule_id.")
        parsed.append(SpeedRule.from_dict(r))
    return tuple(parsed)


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    port = int(_opt(data, "port", 3001))
    if port < 1 or port > 65535:
        raise ValueError(f"Config inválida: 'port' fora da faixa: {port}")

    # ---- storage ----
    storage = StorageConfig(
        data_dir=str(_opt(data, "storage.data_dir", "data")),
        max_detections=int(_positive(_opt(data, "storage.max_detections", 1000), "storage.max_detections")),
        webhook_log_max_bytes=int(
            _positive(_opt(data, "storage.webhook_log_max_bytes", 50 * 1024 * 1024), "storage.webhook_log_max_bytes")
        ),
    )

    # ---- speed_monitor ----
    sm_raw = _opt(data, "speed_monitor", None)
    speed_monitor = SpeedMonitorConfig()
    if isinstance(sm_raw, Mapping):
        csv_path = _opt(sm_raw, "csv_path", None)
        speed_monitor = SpeedMonitorConfig(
            enabled=bool(_opt(sm_raw, "enabled", True)),
            csv_path=None if csv_path in (None, "") else str(csv_path),
            queue_max=int(_opt(sm_raw, "queue_max", 20000)),
            drop_on_full=bool(_opt(sm_raw, "drop_on_full", True)),
            flush_every_n=int(_opt(sm_raw, "flush_every_n", 200)),
            flush_every_sec=float(_opt(sm_raw, "flush_every_sec", 2.0)),
            cooldown_sec=float(_opt(sm_raw, "cooldown_sec", 0.0)),
            rules=_to_rules(_opt(sm_raw, "rules", None), "speed_monitor.rules"),
        )

    return AppConfig(
        hostname=str(_opt(data, "hostname", "0.0.0.0")),
        port=port,
        line_distance_m=_positive(_opt(data, "line_distance_m", 10.0), "line_distance_m"),
        match_window_sec=_positive(_opt(data, "match_window_sec", 30.0), "match_window_sec"),
        sweep_interval_sec=_positive(_opt(data, "sweep_interval_sec", 60.0), "sweep_interval_sec"),
        log_level=_log_level(_opt(data, "log_level", "INFO")),
        storage=storage,
        speed_monitor=speed_monitor,
    )


def load_config(path: str | None = None) -> AppConfig:
    p = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Config inválida: '{p}' deve conter um mapa YAML.")
    return parse_config(data)
