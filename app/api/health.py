from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from datetime import datetime
from app.core.config import settings
from app.database import check_database_health

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    """Application health check endpoint"""
    db_health = await check_database_health()
    gateway = getattr(request.app.state, "channel_gateway", None)

    overall_status = "healthy" if db_health["overall"] else "unhealthy"

    return JSONResponse(
        status_code=200 if db_health["overall"] else 503,
        content={
            "status": overall_status,
            "timestamp": datetime.utcnow().isoformat(),
            "databases": {
                "mysql": "connected" if db_health["mysql"] else "disconnected",
                "redis": "connected" if db_health["redis"] else "disconnected"
            },
            "channel_provider": "initialized" if gateway and gateway.is_initialized else "not_initialized",
            "service": settings.app_name
        }
    )


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes readiness check endpoint"""
    db_health = await check_database_health()

    if not db_health["overall"]:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "databases": db_health}
        )

    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes liveness check endpoint"""
    return {"status": "alive", "timestamp": datetime.utcnow()}
