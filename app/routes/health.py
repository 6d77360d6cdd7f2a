"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Liveness: the process is serving requests."""
    return {"status": "ok", "service": "crm-calendar-sync"}


async def _database_check() -> dict:
    started = time.perf_counter()
    try:
        report = await db_health_check()
    except Exception as e:
        return {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        }

    check = {
        "ok": bool(report.get("healthy")),
        "latency_ms": round((time.perf_counter() - started) * 1000, 1),
    }
    stats = report.get("pool_stats")
    if stats:
        check["pool_size"] = stats.get("pool_size", 0)
        check["pool_available"] = stats.get("pool_available", 0)
        check["connection_time_ms"] = report.get("connection_time_ms", 0)
    if not check["ok"]:
        check["error"] = report.get("error", "Database unhealthy")
    return check


def _configuration_check() -> dict:
    issues = []
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET):
        issues.append("Google OAuth client not configured")
    if not settings.ENCRYPTION_KEY:
        issues.append("ENCRYPTION_KEY not set")
    return {"ok": not issues, "issues": issues or None, "environment": settings.environment}


@router.get("/readyz")
async def readyz():
    """Readiness: database reachable through the pool and sync credentials configured."""
    checks = {"database": await _database_check(), "configuration": _configuration_check()}
    return {
        "overall_ok": all(check["ok"] for check in checks.values()),
        "checks": checks,
        "timestamp": time.time(),
    }
