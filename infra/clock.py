import threading
from time import time

from domain.ports import Clock


# epoch seconds (float)
class SystemClock(Clock):
    def now_epoch(self) -> float:
        return time()


class ManualClock(Clock):
    """Relógio controlado à mão. Só usado pelos testes; main.py usa SystemClock."""

    def __init__(self, start_epoch: float = 0.0):
        self._now = float(start_epoch)
        self._lock = threading.Lock()

    def now_epoch(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += float(seconds)
            return self._now

    def set(self, epoch: float) -> None:
        with self._lock:
            self._now = float(epoch)
