from typing import Any

from fastapi import APIRouter

from stepgate.config import get_settings

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}


@router.get("/health/ready")
async def readiness_check() -> dict[str, Any]:
    checks = {
        "configuration": "unhealthy",
        "verifier": settings.get_verifier_mode(),
    }

    try:
        settings.validate_security()
        checks["configuration"] = "healthy"
    except (RuntimeError, ValueError) as e:
        checks["configuration"] = f"unhealthy: {str(e)}"

    overall = "healthy" if checks["configuration"] == "healthy" else "unhealthy"

    return {
        "status": overall,
        "checks": checks,
    }
