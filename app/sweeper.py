from __future__ import annotations

import logging
import threading
from typing import Optional

from .correlator import TriggerCorrelator

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Varre a tabela de pendentes a cada interval_sec, independente do tráfego.
    """

    def __init__(self, correlator: TriggerCorrelator, interval_sec: float):
        self.correlator = correlator
        self.interval_sec = float(interval_sec)

        self._stop = threading.Event()
        self._t: Optional[threading.Thread] = None

        self.total_runs = 0
        self.total_evicted = 0
        self.total_failed = 0

    def start(self) -> None:
        if self._t is not None:
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._worker, name="expiry-sweeper", daemon=True)
        self._t.start()
        logger.info("[sweeper] started interval=%.1fs window=%.1fs",
                    self.interval_sec, self.correlator.match_window_sec)

    def stop(self) -> None:
        if self._t is None:
            return
        self._stop.set()
        self._t.join(timeout=5)
        self._t = None

    def run_once(self) -> int:
        evicted = self.correlator.sweep()
        self.total_runs += 1
        self.total_evicted += len(evicted)
        return len(evicted)

    def _worker(self) -> None:
        while not self._stop.wait(self.interval_sec):
            try:
                self.run_once()
            except Exception:
                self.total_failed += 1
                logger.exception("[sweeper] sweep failed")
