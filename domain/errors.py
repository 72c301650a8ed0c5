from __future__ import annotations


class SpeedTrapError(Exception):
    pass


class MalformedEvent(SpeedTrapError, ValueError):
    """Payload/trigger sem os campos mínimos (alarm, key, timestamp)."""


class InvalidInterval(SpeedTrapError, ValueError):
    """Par casado com delta de tempo <= 0: não gera leitura."""

    def __init__(self, time_diff_ms: int | None):
        self.time_diff_ms = time_diff_ms
        super().__init__(f"Intervalo inválido entre triggers: time_diff_ms={time_diff_ms}")
