"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


def _integrations(request: Request) -> dict:
    gateway = getattr(request.app.state, "generation_gateway", None)
    portal = getattr(request.app.state, "asm_portal", None)
    return {
        "ai_provider": "configured" if gateway is not None and gateway.configured else "missing",
        "asm_portal": "configured" if portal is not None and portal.enabled else "disabled",
        "stripe": "configured" if settings.STRIPE_SECRET_KEY else "missing",
    }


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports database and Redis reachability plus which integrations are configured.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        **_integrations(request),
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Redis only backs rate limiting, so it is reported but never degrades status.
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"

    return health_status


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Ready once a content generation provider is configured."""
    integrations = _integrations(request)
    missing = []
    if integrations["ai_provider"] != "configured":
        missing.append("ANTHROPIC_API_KEY or OPENAI_API_KEY")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
