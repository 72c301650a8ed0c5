from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain.models import Detection
from domain.ports import DetectionStore

logger = logging.getLogger(__name__)


class JsonDetectionStore(DetectionStore):
    """
    Detecções em um único arquivo JSON (array), mais recente primeiro.
    Limitado a max_detections para o arquivo não crescer sem fim.
    """

    def __init__(self, path: str | Path, *, max_detections: int = 1000):
        self.path = Path(path)
        self.max_detections = int(max_detections)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("[store] could not read %s: %s", self.path, e)
            return []
        return data if isinstance(data, list) else []

    def _write(self, rows: List[Dict[str, Any]]) -> None:
        # escreve em tmp + replace para não deixar o arquivo pela metade
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def add(self, detection: Detection) -> None:
        with self._lock:
            rows = self._read()
            rows.insert(0, detection.to_dict())
            if len(rows) > self.max_detections:
                del rows[self.max_detections:]
            self._write(rows)
            count = len(rows)
        logger.debug("[store] detection id=%s saved count=%d", detection.id, count)

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._read()
        if limit and limit > 0:
            return rows[:limit]
        return rows
