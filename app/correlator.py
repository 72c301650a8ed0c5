from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Dict, List, Optional

from domain.models import (
    AlarmContext,
    Delivery,
    LineCrossingEvent,
    MatchedPair,
    PendingRecord,
    PendingStats,
)
from domain.ports import Clock

logger = logging.getLogger(__name__)


class TriggerCorrelator:
    """
    Casa cruzamentos de linha que chegam em webhooks separados.

    - Tabela de pendentes: trigger_key -> PendingRecord
    - Grupo = nome do alarme + lista ordenada de devices de origem
    - Casamento: primeiro pendente do grupo em linha DIFERENTE (ordem de inserção)
    - Pendente com idade > match_window_sec nunca casa (é removido)

    Um único lock cobre scan + remoção/inserção; o sweeper usa o mesmo lock.
    """

    def __init__(self, clock: Clock, match_window_sec: float):
        self.clock = clock
        self.match_window_sec = float(match_window_sec)

        self._lock = threading.Lock()
        self._pending: Dict[str, PendingRecord] = {}

    def submit(self, delivery: Delivery) -> Optional[MatchedPair]:
        candidates = delivery.candidates()
        group_key = delivery.alarm.group_key

        if len(candidates) >= 2:
            # webhook já trouxe os dois cruzamentos: não toca na tabela
            ordered = sorted(candidates, key=lambda ev: ev.timestamp)
            logger.info(
                "[correlator] batch with %d line crossings, matched directly group=%s",
                len(candidates), group_key,
            )
            return MatchedPair.ordered(ordered[0], ordered[1], group_key=group_key, source="batch")

        if not candidates:
            logger.debug("[correlator] no line_crossed candidate in delivery group=%s", group_key)
            return None

        return self._match_single(candidates[0], delivery.alarm)

    def _match_single(self, ev: LineCrossingEvent, alarm: AlarmContext) -> Optional[MatchedPair]:
        now = self.clock.now_epoch()
        group_key = alarm.group_key
        trigger_key = ev.trigger_key

        with self._lock:
            evicted = self._evict_expired_locked(now)

            matched: Optional[PendingRecord] = None
            for rec in self._pending.values():
                if rec.group_key != group_key or rec.trigger_key == trigger_key:
                    continue
                # mesma linha duas vezes não é um veículo atravessando
                if rec.event.line != ev.line:
                    matched = rec
                    break

            if matched is None:
                self._pending[trigger_key] = PendingRecord(
                    event=ev,
                    group_key=group_key,
                    trigger_key=trigger_key,
                    received_at=now,
                )
                pending = len(self._pending)
            else:
                del self._pending[matched.trigger_key]

        self._log_evicted(evicted, now)

        if matched is None:
            logger.info(
                "[correlator] stored trigger=%s group=%s line=%s pending=%d",
                trigger_key, group_key, ev.line, pending,
            )
            return None

        logger.info("[correlator] matched trigger=%s with=%s", trigger_key, matched.trigger_key)
        return MatchedPair.ordered(matched.event, ev, group_key=group_key, source="pending")

    def sweep(self, now_epoch: Optional[float] = None) -> List[PendingRecord]:
        now = self.clock.now_epoch() if now_epoch is None else float(now_epoch)
        with self._lock:
            evicted = self._evict_expired_locked(now)
            remaining = len(self._pending)

        self._log_evicted(evicted, now)
        if evicted:
            logger.info("[sweeper] cleaned %d unmatched triggers, remaining=%d", len(evicted), remaining)
        return evicted

    def _evict_expired_locked(self, now: float) -> List[PendingRecord]:
        expired = [rec for rec in self._pending.values() if rec.age(now) > self.match_window_sec]
        for rec in expired:
            del self._pending[rec.trigger_key]
        return expired

    @staticmethod
    def _log_evicted(evicted: List[PendingRecord], now: float) -> None:
        for rec in evicted:
            logger.info("[correlator] evicted unmatched trigger=%s age=%.1fs", rec.trigger_key, rec.age(now))

    def stats(self) -> PendingStats:
        with self._lock:
            groups = Counter(rec.group_key for rec in self._pending.values())
            return PendingStats(pending_count=len(self._pending), groups=dict(groups))

    def pending_keys(self) -> List[str]:
        """Chaves pendentes em ordem de inserção. Só usado pelos testes."""
        with self._lock:
            return list(self._pending.keys())
