
import pytest

from domain.models import Detection
from domain.services import derive_speed
from infra.sinks import PrintDetectionSink
from factories import crossing


@pytest.fixture
def detection():
    return Detection(
        id="1700000000000-abc",
        timestamp="2023-11-14T22:13:20+00:00",
        alarm_name="Speed",
        group_key="Speed:cam-1,cam-2",
        match_source="pending",
        reading=derive_speed(crossing(1000, "A", device="cam-1"), crossing(1500, "B", device="cam-2"), 10),
    )


def test_print_sink_line(detection, capsys):
    PrintDetectionSink().publish(detection)

    out = capsys.readouterr().out
    assert "72.00 km/h" in out
    assert "cam-1/A -> cam-2/B" in out
    assert "OUT-OF-RANGE" not in out
