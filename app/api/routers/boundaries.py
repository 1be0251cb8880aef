from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_actor, require_perm
from app.domain.models import PublishedBoundaryListRead, PublishedBoundaryRead
from app.domain.permissions import PERM_BOUNDARY_ADMIN, PERM_BOUNDARY_READ, Actor
from app.infra.audit import set_audit_context
from app.services.region_service import RegionService

router = APIRouter()


def get_region_service() -> RegionService:
    return RegionService()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Service = Annotated[RegionService, Depends(get_region_service)]


@router.get(
    "/published",
    response_model=PublishedBoundaryListRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def list_published_boundaries(actor: CurrentActor, service: Service) -> PublishedBoundaryListRead:
    boundaries = [PublishedBoundaryRead.model_validate(row) for row in service.list_published_boundaries(actor)]
    return PublishedBoundaryListRead(count=len(boundaries), boundaries=boundaries)


@router.get(
    "/export",
    dependencies=[Depends(require_perm(PERM_BOUNDARY_ADMIN))],
)
def export_boundaries(request: Request, actor: CurrentActor, service: Service) -> dict[str, Any]:
    collection = service.export_feature_collection(actor)
    set_audit_context(
        request,
        action="boundary.export",
        resource="region_boundaries",
        detail={"what": {"feature_count": len(collection["features"])}},
    )
    return collection
