"""HTTP entrypoint that lets a scheduler trigger pipeline runs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request

from sourcing.core.config import get_settings
from sourcing.jobs.run_pipeline import run_pipeline_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# A single worker keeps runs from overlapping inside one instance.
_executor = ThreadPoolExecutor(max_workers=1)

# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/run")
def enqueue_run() -> Any:
    """
    Enqueue one sourcing pipeline run.
    Optional JSON field: max_failures (int >= 0), overrides PIPELINE_MAX_FAILURES.
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    max_failures_raw = payload.get("max_failures")
    max_failures = None
    if max_failures_raw is not None:
        try:
            max_failures = int(max_failures_raw)
        except (TypeError, ValueError):
            return jsonify({"error": "max_failures must be numeric"}), 400
        if max_failures < 0:
            return jsonify({"error": "max_failures must not be negative"}), 400

    job_args = dict(max_failures=max_failures)
    logger.info("Queueing sourcing pipeline run: %s", job_args)
    _executor.submit(_run_job_safe, job_args)
    return jsonify({"data": {"status": "queued"}}), 202


# ---------- Internals ----------


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    try:
        run_pipeline_job(**job_args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Sourcing pipeline run failed: %s", exc)


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
