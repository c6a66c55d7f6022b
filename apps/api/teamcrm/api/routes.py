from fastapi import APIRouter
from fastapi.responses import Response

from teamcrm.auth.api import router as auth_router, users_router
from teamcrm.core.config import get_settings
from teamcrm.core.errors import NotFound
from teamcrm.crm.api import activities_router, companies_router, contacts_router, deals_router
from teamcrm.metrics import generate_metrics_payload, metrics_content_type
from teamcrm.teams.api import router as teams_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(teams_router)
router.include_router(companies_router)
router.include_router(contacts_router)
router.include_router(deals_router)
router.include_router(activities_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    if not get_settings().metrics_enabled:
        raise NotFound("Not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
