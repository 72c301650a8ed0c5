from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.correlator import TriggerCorrelator
from app.pipeline import SpeedTrapPipeline
from domain.ports import DetectionStore

from .webhook_log import JsonlWebhookLog

logger = logging.getLogger(__name__)

RECENT_WEBHOOKS = 5


def _failure(error: str, exc: Exception) -> JSONResponse:
    logger.error("[http] %s: %s", error, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": error, "message": str(exc)},
    )


def _parse_body(raw: str) -> Optional[Any]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def create_app(
    pipeline: SpeedTrapPipeline,
    correlator: TriggerCorrelator,
    store: DetectionStore,
    webhook_log: JsonlWebhookLog,
) -> FastAPI:
    app = FastAPI(title="Speed Trap API", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/webhook")
    async def receive_webhook(request: Request):
        raw = (await request.body()).decode("utf-8", errors="replace")
        entry: Dict[str, Any] = {
            "remote_ip": request.client.host if request.client else "unknown",
            "method": request.method,
            "path": request.url.path,
            "headers": dict(request.headers),
            "query": dict(request.query_params),
            "raw_body": raw,
            "parsed": _parse_body(raw),
        }
        try:
            outcome = await run_in_threadpool(pipeline.handle, entry)
        except OSError as e:
            return _failure("Failed to persist webhook", e)
        return {"success": True, **outcome.to_dict()}

    @app.get("/api/detections")
    def list_detections(limit: Optional[int] = None):
        try:
            rows = store.list(limit)
        except OSError as e:
            return _failure("Failed to fetch detections", e)
        return {"success": True, "count": len(rows), "detections": rows}

    @app.get("/api/webhooks")
    def list_webhooks(limit: Optional[int] = None):
        try:
            rows = webhook_log.read(limit)
        except OSError as e:
            return _failure("Failed to fetch webhooks", e)
        return {
            "success": True,
            "count": len(rows),
            "file_path": str(webhook_log.path),
            "size_bytes": webhook_log.size_bytes(),
            "trigger_stats": correlator.stats().to_dict(),
            "webhooks": rows,
        }

    @app.get("/api/webhooks/raw")
    def raw_webhooks(limit: int = 100):
        try:
            lines = webhook_log.tail(limit)
        except OSError as e:
            return _failure("Failed to fetch raw webhooks", e)
        return {"success": True, "file_path": str(webhook_log.path), "lines": lines}

    @app.get("/api/stats")
    def stats():
        try:
            detections = store.list()
            webhooks = webhook_log.read()
        except OSError as e:
            return _failure("Failed to fetch stats", e)

        trigger_stats = correlator.stats().to_dict()
        return {
            "success": True,
            "detections": {
                "total": len(detections),
                "latest": detections[0].get("timestamp") if detections else None,
            },
            "triggers": trigger_stats,
            "webhooks": {
                "total": len(webhooks),
                "latest": webhooks[0].get("received_at") if webhooks else None,
                "recent": webhooks[:RECENT_WEBHOOKS],
            },
            "trigger_stats": trigger_stats,
            "line_distance_m": pipeline.policy.line_distance_m,
            "match_window_sec": correlator.match_window_sec,
            "total_deliveries": pipeline.total_deliveries,
            "total_detections": pipeline.total_detections,
            "total_invalid": pipeline.total_invalid,
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
