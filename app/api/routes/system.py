from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.dependencies.rate_limits import get_limiter
from infrastructure.services import NotificationServiceDep, SettingsDep

router = APIRouter(tags=["System"])
limiter = get_limiter()


# Load balancer health checks hit these every few seconds, so the limit is generous
@router.get("/version")
@limiter.limit("50/minute")
def get_version(request: Request, settings: SettingsDep):  # pylint: disable=unused-argument
    """Get the version of the application."""
    return {"version": settings.GIT_SHA, "environment": settings.ENVIRONMENT}


@router.get("/health")
@limiter.limit("50/minute")
def get_health(
    request: Request, service: NotificationServiceDep
):  # pylint: disable=unused-argument
    """Healthcheck endpoint reporting channel adapter health."""
    health = service.health_check()
    status = "ok" if health["healthy"] else "degraded"
    return JSONResponse(
        status_code=200 if health["healthy"] else 503,
        content={"status": status, **health},
    )
