# app/routes/health.py
"""
Health check endpoints with database pool, redis and presence monitoring.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.features.presence.services.presence_service import presence_service
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "jumpseat-core"}


@router.get("/readyz")
async def readyz():
    """Readiness check across the database pool, redis and presence."""
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                }
            )
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Redis, only when presence fans out through it
    if settings.redis_broadcast_enabled():
        t0 = time.time()
        try:
            redis_ok = await fast_redis.ping()
            checks["redis"] = {
                "ok": bool(redis_ok),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = overall_ok and bool(redis_ok)
        except Exception as e:
            checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 3) Presence service
    presence_health = presence_service.health_check()
    checks["presence"] = {
        "ok": presence_health["healthy"],
        "connections": presence_health["connections"],
        "broadcaster": presence_health["broadcaster"],
    }
    overall_ok = overall_ok and presence_health["healthy"]

    return {"overall_ok": overall_ok, "checks": checks}
