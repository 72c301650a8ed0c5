import pytest

from app.correlator import TriggerCorrelator
from infra.clock import ManualClock

MATCH_WINDOW_SEC = 30.0


@pytest.fixture
def clock():
    return ManualClock(start_epoch=1_700_000_000.0)


@pytest.fixture
def correlator(clock):
    return TriggerCorrelator(clock=clock, match_window_sec=MATCH_WINDOW_SEC)
