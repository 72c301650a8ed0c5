from __future__ import annotations

from .errors import InvalidInterval
from .models import EventSummary, LineCrossingEvent, SpeedReading

MS_TO_KMH = 3.6


def derive_speed(
    a: LineCrossingEvent,
    b: LineCrossingEvent,
    line_distance_m: float,
) -> SpeedReading:
    """
    Converte dois cruzamentos de linha em uma leitura de velocidade.

    O par é reordenado por timestamp; a ordem de chegada não importa.
    Velocidades absurdas NÃO são rejeitadas aqui (ver SpeedMonitor).

    Raises:
        InvalidInterval: delta <= 0 ou timestamp ausente.
    """
    if a.timestamp is None or b.timestamp is None:
        raise InvalidInterval(None)

    first, second = sorted((a, b), key=lambda ev: ev.timestamp)
    time_diff_ms = int(second.timestamp - first.timestamp)
    if time_diff_ms <= 0:
        raise InvalidInterval(time_diff_ms)

    time_diff_s = time_diff_ms / 1000.0
    speed_ms = float(line_distance_m) / time_diff_s
    speed_kmh = speed_ms * MS_TO_KMH

    return SpeedReading(
        speed_kmh=round(speed_kmh, 2),
        speed_ms=round(speed_ms, 2),
        time_diff_seconds=round(time_diff_s, 3),
        time_diff_ms=time_diff_ms,
        line_distance_m=float(line_distance_m),
        first_event=EventSummary.of(first),
        second_event=EventSummary.of(second),
    )
