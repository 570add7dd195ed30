from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crmhub.ai.api import router as ai_router
from crmhub.core.auth import AuthUser, get_current_user
from crmhub.core.config import get_settings
from crmhub.crm.api import (
    activities_router,
    companies_router,
    contacts_router,
    opportunities_router,
    stats_router,
)
from crmhub.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(companies_router)
router.include_router(contacts_router)
router.include_router(opportunities_router)
router.include_router(activities_router)
router.include_router(stats_router)
router.include_router(ai_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
