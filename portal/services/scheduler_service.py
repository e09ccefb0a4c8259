"""
Client Engagement Portal
Scheduler Service — registry and runner for periodic maintenance jobs.

Jobs are plain functions registered by name and executed inside the Flask
app context. They are triggered by an external scheduler (cron, a platform
job runner) through the Flask CLI, e.g. ``flask retry-orphaned-identities``.

Architecture:
    - Pluggable job functions registered via decorator
    - run_job: executes one job, times it, never lets its exception escape
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("orphaned_identity_retry")
        def retry_orphans(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


def run_job(app: Flask, job_name: str) -> dict:
    """
    Execute a single job by name.

    Returns:
        Dict with job_name, status, duration_ms, result or error.
    """
    fn = _job_registry.get(job_name)
    if not fn:
        return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

    start = time.monotonic()
    result = None
    error = None
    status = "success"

    try:
        with app.app_context():
            result = fn(app)
    except Exception as exc:
        status = "failed"
        error = str(exc)
        logger.exception("Job %s failed: %s", job_name, exc)

    duration_ms = int((time.monotonic() - start) * 1000)
    return {
        "job_name": job_name,
        "status": status,
        "duration_ms": duration_ms,
        "result": result,
        "error": error,
    }
