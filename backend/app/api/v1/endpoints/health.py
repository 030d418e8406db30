"""
Health check endpoints.

- /health       - liveness (app is running)
- /health/ready - readiness (database and security state store reachable)
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
import time

from sqlalchemy import text

from app.core.database import get_session_local
from app.core.logging_config import logger
from app.modules.auth.dependencies import get_security_services


router = APIRouter(prefix="/health", tags=["Health Checks"])


@router.get("")
async def liveness():
    return {"status": "healthy", "service": "college-portal"}


async def check_database() -> Dict[str, Any]:
    start = time.time()
    try:
        async with get_session_local()() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": round((time.time() - start) * 1000, 2)}
    except Exception as e:
        logger.error(f"[HealthCheck] Database check failed: {e}")
        return {"status": "unhealthy", "latency_ms": round((time.time() - start) * 1000, 2)}


async def check_state_store(request: Request) -> Dict[str, Any]:
    start = time.time()
    store = get_security_services(request).store
    try:
        await store.set("health_check", "ok", ttl=10)
        ok = await store.get("health_check") == "ok"
        return {
            "status": "healthy" if ok else "unhealthy",
            "backend": type(store).__name__,
            "latency_ms": round((time.time() - start) * 1000, 2),
        }
    except Exception as e:
        logger.error(f"[HealthCheck] State store check failed: {e}")
        return {"status": "unhealthy", "backend": type(store).__name__}


@router.get("/ready")
async def readiness(request: Request):
    checks = {
        "database": await check_database(),
        "state_store": await check_state_store(request),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ready" if healthy else "not_ready", "checks": checks},
    )
