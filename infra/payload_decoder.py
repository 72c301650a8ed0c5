from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional

from domain.errors import MalformedEvent
from domain.models import AlarmContext, Delivery, LineCrossingEvent

logger = logging.getLogger(__name__)


def _timestamp_ms(raw: Any) -> Optional[int]:
    # bool é int em Python; 0 conta como ausente
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    if isinstance(raw, (int, float)):
        return int(raw) or None
    if isinstance(raw, str):
        try:
            return int(float(raw.strip())) or None
        except (ValueError, OverflowError):
            return None
    return None


def _first_line(zones: Any) -> Optional[str]:
    if not isinstance(zones, Mapping):
        return None
    lines = zones.get("line")
    if isinstance(lines, (list, tuple)) and lines:
        return None if lines[0] is None else str(lines[0])
    return None


def decode_trigger(raw: Any) -> LineCrossingEvent:
    if not isinstance(raw, Mapping):
        raise MalformedEvent(f"Trigger deve ser um objeto, veio {type(raw).__name__}")

    event_id = raw.get("eventId")
    return LineCrossingEvent(
        device=str(raw.get("device") or ""),
        key=str(raw.get("key") or ""),
        timestamp=_timestamp_ms(raw.get("timestamp")),
        line=_first_line(raw.get("zones")),
        event_id=None if event_id is None else str(event_id),
    )


def decode_alarm(alarm: Mapping[str, Any]) -> AlarmContext:
    sources = alarm.get("sources") or []
    devices = []
    for s in sources if isinstance(sources, list) else []:
        if isinstance(s, Mapping):
            devices.append(str(s.get("device") or ""))
        else:
            devices.append("")
    return AlarmContext(name=str(alarm.get("name") or "Unknown"), sources=tuple(devices))


def decode_delivery(payload: Any) -> Delivery:
    """
    Espera (campos extras são ignorados):
      {"alarm": {"name": "...",
                 "sources": [{"device": "cam-1"}, ...],
                 "triggers": [{"key": "line_crossed", "device": "cam-1",
                               "timestamp": 1700000000000, "eventId": "...",
                               "zones": {"line": ["A"]}}]}}
    """
    if not isinstance(payload, Mapping):
        raise MalformedEvent("Payload deve ser um objeto JSON.")
    alarm = payload.get("alarm")
    if not isinstance(alarm, Mapping):
        raise MalformedEvent("Payload sem campo 'alarm'.")

    raw_triggers = alarm.get("triggers") or []
    if not isinstance(raw_triggers, list):
        raw_triggers = []

    triggers = []
    for i, raw in enumerate(raw_triggers):
        try:
            triggers.append(decode_trigger(raw))
        except MalformedEvent as e:
            logger.debug("[decoder] skipping trigger[%d]: %s", i, e)

    return Delivery(alarm=decode_alarm(alarm), triggers=tuple(triggers))
