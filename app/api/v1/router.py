from fastapi import APIRouter
from api.v1.routes.notifications import router as notifications_router
from api.v1.routes.webhooks import router as webhooks_router


# Versioned endpoints; webhooks are mounted without a prefix in api.router
router = APIRouter()
router.include_router(notifications_router)

__all__ = ["router", "webhooks_router"]
