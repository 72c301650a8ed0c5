from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from domain.errors import InvalidInterval, MalformedEvent
from domain.models import Delivery, DeliveryOutcome, Detection, MatchedPair
from domain.ports import AnomalySink, Clock, DetectionSink, DetectionStore, WebhookLog
from domain.services import derive_speed
from infra.payload_decoder import decode_delivery

from .correlator import TriggerCorrelator
from .speed_monitor import SpeedMonitor

logger = logging.getLogger(__name__)


@dataclass
class SpeedPolicy:
    line_distance_m: float


class SpeedTrapPipeline:
    """
    Pipeline por entrega de webhook.

    1) grava o registro bruto (antes de decodificar)
    2) decodifica -> Delivery
    3) correlator.submit (única parte sob lock)
    4) derive_speed + monitor de faixa
    5) persiste e publica a detecção
    """

    def __init__(
        self,
        correlator: TriggerCorrelator,
        clock: Clock,
        policy: SpeedPolicy,
        *,
        store: DetectionStore,
        webhook_log: Optional[WebhookLog] = None,
        monitor: Optional[SpeedMonitor] = None,
        anomaly_sink: Optional[AnomalySink] = None,
        sinks: Iterable[DetectionSink] = (),
    ):
        self.correlator = correlator
        self.clock = clock
        self.policy = policy

        self.store = store
        self.webhook_log = webhook_log
        self.monitor = monitor
        self.anomaly_sink = anomaly_sink
        self.sinks = list(sinks)

        self.total_deliveries = 0
        self.total_detections = 0
        self.total_invalid = 0

    def handle(self, entry: Dict[str, Any]) -> DeliveryOutcome:
        """entry = registro capturado pela camada HTTP (raw_body, parsed, headers...)."""
        if self.webhook_log is not None:
            # OSError sobe: a camada HTTP responde 500
            self.webhook_log.append(entry)

        self.total_deliveries += 1
        try:
            delivery = decode_delivery(entry.get("parsed"))
        except MalformedEvent as e:
            logger.info("[pipeline] ignored delivery: %s", e)
            return DeliveryOutcome(status="ignored")

        return self.process(delivery)

    def process(self, delivery: Delivery) -> DeliveryOutcome:
        pair = self.correlator.submit(delivery)
        if pair is None:
            status = "pending" if delivery.candidates() else "ignored"
            return DeliveryOutcome(status=status)

        try:
            detection = self._build_detection(delivery, pair)
        except InvalidInterval as e:
            self.total_invalid += 1
            logger.warning("[pipeline] discarded pair group=%s: %s", pair.group_key, e)
            return DeliveryOutcome(status="invalid")

        self._emit(detection)
        return DeliveryOutcome(status="matched", detection=detection)

    def _build_detection(self, delivery: Delivery, pair: MatchedPair) -> Detection:
        reading = derive_speed(pair.first, pair.second, self.policy.line_distance_m)

        now = self.clock.now_epoch()
        detection_id = f"{int(now * 1000)}-{uuid.uuid4().hex[:9]}"

        anomaly_rules: tuple[str, ...] = ()
        if self.monitor is not None:
            anomaly_rules = tuple(r.rule_id for r in self.monitor.violated_rules(reading.speed_kmh))
            for a in self.monitor.check(now, pair.group_key, detection_id, reading.speed_kmh):
                logger.warning(
                    "[pipeline] speed %.2f km/h out of range (%s) detection=%s",
                    a.speed_kmh, a.rule, detection_id,
                )
                if self.anomaly_sink is not None:
                    self.anomaly_sink.publish(a)

        return Detection(
            id=detection_id,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            alarm_name=delivery.alarm.name,
            group_key=pair.group_key,
            match_source=pair.source,
            reading=reading,
            out_of_range=bool(anomaly_rules),
            anomaly_rules=anomaly_rules,
        )

    def _emit(self, detection: Detection) -> None:
        self.total_detections += 1
        try:
            self.store.add(detection)
        except OSError:
            logger.exception("[pipeline] failed to store detection id=%s", detection.id)

        for sink in self.sinks:
            try:
                sink.publish(detection)
            except Exception:
                logger.exception("[pipeline] sink %s failed for detection id=%s",
                                 type(sink).__name__, detection.id)
