"""
Health check endpoints for Cloud Run and for diagnosing dependencies.
"""
import logging
import time

from fastapi import APIRouter, Depends

from signflow.dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy", "version": "1.0.0"}


@router.get("/dependencies")
async def health_check_dependencies(services: Services = Depends(get_services)):
    """
    Check database, storage and email configuration.

    Always returns 200; the body tells which dependency is failing.
    """
    result = {}

    for name, check in (("database", services.repository.ping), ("storage", services.storage.ping)):
        started = time.monotonic()
        try:
            ok = await check()
            result[name] = {"ok": bool(ok), "latency_ms": int((time.monotonic() - started) * 1000)}
        except Exception as e:
            logger.warning(f"Health check for {name} failed: {e}")
            result[name] = {"ok": False, "error": str(e)}

    configured = services.email.is_configured()
    result["email"] = {"ok": configured, "configured": configured}

    status = "healthy" if all(item["ok"] for item in result.values()) else "degraded"
    return {"status": status, "dependencies": result}
