from __future__ import annotations

from fastapi import APIRouter, Depends

from ..governance.selector import CatalogError
from ..models.schemas import SystemHealth
from ..services.container import Services
from ..utils.auth import get_services

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=SystemHealth)
async def health(services: Services = Depends(get_services)) -> SystemHealth:
    try:
        services.catalog_loader()
        catalog_status = "loaded"
    except CatalogError:
        catalog_status = "unavailable"
    components = {
        "catalog": catalog_status,
        "throttle": "running" if services.throttle.running else "idle",
        "generation": "simulated" if services.generator.simulated else "live",
    }
    status = "ok" if catalog_status == "loaded" else "degraded"
    return SystemHealth(status=status, components=components)
