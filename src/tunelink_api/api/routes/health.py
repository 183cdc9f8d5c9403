from fastapi import APIRouter

from tunelink_api.api.deps import ServicesDep
from tunelink_api.schemas.conversions import HealthResponse

router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check(services: ServicesDep) -> HealthResponse:
    registry = services.adapters(services.default_app)
    return HealthResponse(status="healthy", platforms=registry.platforms)
