from __future__ import annotations
from domain.ports import DetectionSink
from domain.models import Detection


class PrintDetectionSink(DetectionSink):
    def format_line(self, detection: Detection) -> str:
        r = detection.reading
        flag = " OUT-OF-RANGE" if detection.out_of_range else ""
        return (
            f"[{detection.timestamp}] {r.speed_kmh:>7.2f} km/h ({r.speed_ms:.2f} m/s){flag} | "
            f"dt={r.time_diff_ms}ms dist={r.line_distance_m:g}m | "
            f"{r.first_event.device}/{r.first_event.line} -> {r.second_event.device}/{r.second_event.line} | "
            f"alarm={detection.alarm_name} src={detection.match_source}"
        )

    def publish(self, detection: Detection) -> None:
        print(self.format_line(detection), flush=True)
