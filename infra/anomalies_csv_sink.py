from __future__ import annotations

import csv
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional, TextIO

from domain.anomalies import SpeedAnomaly
from domain.ports import AnomalySink

logger = logging.getLogger(__name__)

HEADER = ["utc_time", "group_key", "detection_id", "speed_kmh", "rule_id", "rule"]

_STOP = object()


def anomaly_row(a: SpeedAnomaly) -> Dict[str, str]:
    utc = datetime.fromtimestamp(a.t_epoch, tz=timezone.utc)
    return {
        "utc_time": utc.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
        "group_key": a.group_key,
        "detection_id": a.detection_id,
        "speed_kmh": f"{a.speed_kmh:.2f}",
        "rule_id": a.rule_id,
        "rule": a.rule,
    }


class AsyncCsvAnomalyWriter(AnomalySink):
    """
    Registra em CSV as detecções fora da faixa (uma linha por regra violada).

    - O thread do webhook só enfileira; a escrita é de um único worker
    - Arquivo fica aberto enquanto o writer roda; cabeçalho só em arquivo vazio
    - stop() enfileira um marcador: tudo que entrou antes dele é gravado
    """

    def __init__(
        self,
        csv_path: str | Path,
        *,
        queue_max: int = 20000,
        drop_on_full: bool = True,
        flush_every_n: int = 200,
        flush_every_sec: float = 2.0,
    ):
        self.csv_path = Path(csv_path)
        self.drop_on_full = drop_on_full
        self.flush_every_n = max(1, int(flush_every_n))
        self.flush_every_sec = float(flush_every_sec)

        self._q: Queue[Any] = Queue(maxsize=queue_max)
        self._t: Optional[threading.Thread] = None

        self.total_written = 0
        self.total_dropped = 0

    def start(self) -> None:
        if self._t is not None:
            return
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        self._t = threading.Thread(target=self._worker, name="anomaly-csv", daemon=True)
        self._t.start()

    def stop(self, timeout: float = 5.0) -> None:
        if self._t is None:
            return
        try:
            self._q.put(_STOP, timeout=timeout)
        except Full:
            logger.error("[anomalies] queue still full on stop, %d rows lost", self._q.qsize())
        self._t.join(timeout=timeout)
        self._t = None

    def publish(self, anomaly: SpeedAnomaly) -> None:
        if not self.drop_on_full:
            self._q.put(anomaly)
            return
        try:
            self._q.put_nowait(anomaly)
        except Full:
            self.total_dropped += 1
            logger.debug("[anomalies] queue full, dropped detection=%s", anomaly.detection_id)

    def _worker(self) -> None:
        try:
            f = open(self.csv_path, "a", newline="", encoding="utf-8")
        except OSError:
            logger.exception("[anomalies] cannot open %s, writer disabled", self.csv_path)
            return

        with f:
            w = csv.DictWriter(f, fieldnames=HEADER)
            # append já posiciona no fim: tell() == 0 só em arquivo novo/vazio
            if f.tell() == 0:
                w.writeheader()
                f.flush()

            rows: List[Dict[str, str]] = []
            deadline = time.monotonic() + self.flush_every_sec
            while True:
                try:
                    item = self._q.get(timeout=max(0.0, deadline - time.monotonic()))
                except Empty:
                    item = None

                if item is _STOP:
                    self._write(f, w, rows)
                    return
                if item is not None:
                    rows.append(anomaly_row(item))

                if len(rows) >= self.flush_every_n or time.monotonic() >= deadline:
                    self._write(f, w, rows)
                    deadline = time.monotonic() + self.flush_every_sec

    def _write(self, f: TextIO, w: csv.DictWriter, rows: List[Dict[str, str]]) -> None:
        if not rows:
            return
        try:
            w.writerows(rows)
            f.flush()
            self.total_written += len(rows)
        except OSError:
            logger.exception("[anomalies] failed to write %d rows to %s", len(rows), self.csv_path)
            self.total_dropped += len(rows)
        rows.clear()
