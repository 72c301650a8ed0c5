import logging

import uvicorn

from config import load_config
from app.correlator import TriggerCorrelator
from app.pipeline import SpeedPolicy, SpeedTrapPipeline
from app.speed_monitor import SpeedMonitor, SpeedMonitorConfig
from app.sweeper import ExpirySweeper
from infra.anomalies_csv_sink import AsyncCsvAnomalyWriter
from infra.clock import SystemClock
from infra.detection_store import JsonDetectionStore
from infra.http_api import create_app
from infra.sinks import PrintDetectionSink
from infra.webhook_log import JsonlWebhookLog

logger = logging.getLogger("speedtrap")


def main():
    cfg = load_config()

    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    clock = SystemClock()

    # ---- persistência ----
    store = JsonDetectionStore(cfg.storage.detections_path, max_detections=cfg.storage.max_detections)
    webhook_log = JsonlWebhookLog(cfg.storage.webhooks_path, max_bytes=cfg.storage.webhook_log_max_bytes)

    # ---- monitor de faixa (opcional) ----
    monitor = None
    anomaly_writer = None
    if cfg.speed_monitor.enabled:
        monitor = SpeedMonitor(
            rules=cfg.speed_monitor.rules,
            cfg=SpeedMonitorConfig(cooldown_sec=cfg.speed_monitor.cooldown_sec),
        )
        if cfg.speed_monitor.csv_path:
            anomaly_writer = AsyncCsvAnomalyWriter(
                cfg.speed_monitor.csv_path,
                queue_max=cfg.speed_monitor.queue_max,
                drop_on_full=cfg.speed_monitor.drop_on_full,
                flush_every_n=cfg.speed_monitor.flush_every_n,
                flush_every_sec=cfg.speed_monitor.flush_every_sec,
            )
            anomaly_writer.start()
        logger.info("[speed-monitor] enabled=True csv=%s rules=%s",
                    cfg.speed_monitor.csv_path, [r.rule_id for r in monitor.rules])
    else:
        logger.info("[speed-monitor] enabled=False")

    # ---- saídas de detecção ----
    sinks = [PrintDetectionSink()]

    # ---- core ----
    correlator = TriggerCorrelator(clock=clock, match_window_sec=cfg.match_window_sec)
    sweeper = ExpirySweeper(correlator, interval_sec=cfg.sweep_interval_sec)
    sweeper.start()

    pipeline = SpeedTrapPipeline(
        correlator=correlator,
        clock=clock,
        policy=SpeedPolicy(line_distance_m=cfg.line_distance_m),
        store=store,
        webhook_log=webhook_log,
        monitor=monitor,
        anomaly_sink=anomaly_writer,
        sinks=sinks,
    )

    app = create_app(pipeline, correlator, store, webhook_log)

    logger.info(
        "Speed trap running on http://%s:%d line_distance=%.2fm match_window=%.0fs",
        cfg.hostname, cfg.port, cfg.line_distance_m, cfg.match_window_sec,
    )

    try:
        uvicorn.run(app, host=cfg.hostname, port=cfg.port, log_level=cfg.log_level.lower())
    finally:
        try:
            sweeper.stop()
        finally:
            if anomaly_writer is not None:
                anomaly_writer.stop()


if __name__ == "__main__":
    main()
