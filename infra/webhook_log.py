from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain.ports import WebhookLog

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


class JsonlWebhookLog(WebhookLog):
    """
    Log bruto dos webhooks recebidos (JSONL, uma linha por entrega).
    Rotaciona quando o arquivo passa de max_bytes.
    """

    def __init__(self, path: str | Path, *, max_bytes: int = 50 * 1024 * 1024):
        self.path = Path(path)
        self.max_bytes = int(max_bytes)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _rotate_if_needed(self) -> None:
        if not self.path.exists() or self.path.stat().st_size < self.max_bytes:
            return
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        rotated = self.path.with_name(f"{self.path.stem}-{stamp}{self.path.suffix}")
        self.path.rename(rotated)
        logger.info("[webhook-log] rotated to %s", rotated)

    def append(self, entry: Dict[str, Any]) -> None:
        record = {"received_at": datetime.now(timezone.utc).isoformat()}
        record.update(entry or {})
        line = json.dumps(record, default=str) + "\n"
        with self._lock:
            self._rotate_if_needed()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def _lines(self) -> List[str]:
        if not self.path.exists():
            return []
        with self._lock:
            text = self.path.read_text(encoding="utf-8")
        return [ln for ln in text.splitlines() if ln.strip()]

    def read(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entradas mais recentes primeiro. Linhas corrompidas são puladas."""
        out: List[Dict[str, Any]] = []
        for ln in reversed(self._lines()):
            try:
                obj = json.loads(ln)
            except ValueError:
                logger.warning("[webhook-log] skipping unparseable line: %.80s", ln)
                continue
            if isinstance(obj, dict) and isinstance(obj.get("raw_body"), str):
                obj["raw_preview"] = obj["raw_body"][:PREVIEW_CHARS]
            out.append(obj)
            if limit and limit > 0 and len(out) >= limit:
                break
        return out

    def tail(self, limit: int = 100) -> List[str]:
        lines = self._lines()
        return lines[-limit:] if limit > 0 else []

    def size_bytes(self) -> Optional[int]:
        try:
            return self.path.stat().st_size
        except OSError:
            return None
