from __future__ import annotations

from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.api.deps import get_current_claims, require_perm
from app.domain.models import (
    CurrentBoundaryRead,
    LegacyBoundaryListRead,
    LegacyBoundaryRead,
    RegionCreate,
    RegionRead,
    UserRegionRead,
)
from app.domain.permissions import PERM_BOUNDARY_READ, PERM_REGION_WRITE
from app.services.boundary_version_service import BoundaryError, ConflictError, NotFoundError
from app.services.region_service import RegionService

router = APIRouter()


def get_region_service() -> RegionService:
    return RegionService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[RegionService, Depends(get_region_service)]


def _handle_region_error(exc: BoundaryError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "",
    response_model=RegionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGION_WRITE))],
)
def create_region(payload: RegionCreate, claims: Claims, service: Service) -> RegionRead:
    try:
        region = service.create_region(payload, int(claims["sub"]))
    except (NotFoundError, ConflictError) as exc:
        _handle_region_error(exc)
    return RegionRead.model_validate(region)


@router.get(
    "",
    response_model=list[RegionRead],
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def list_regions(
    service: Service,
    include_inactive: Annotated[bool, Query()] = False,
) -> list[RegionRead]:
    return [RegionRead.model_validate(row) for row in service.list_regions(include_inactive=include_inactive)]


@router.get(
    "/{region_id}",
    response_model=RegionRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def get_region(region_id: int, service: Service) -> RegionRead:
    try:
        return RegionRead.model_validate(service.get_region(region_id))
    except NotFoundError as exc:
        _handle_region_error(exc)


@router.get(
    "/{region_id}/boundary",
    response_model=CurrentBoundaryRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def get_current_boundary(region_id: int, service: Service) -> CurrentBoundaryRead:
    try:
        return CurrentBoundaryRead.model_validate(service.current_boundary(region_id))
    except NotFoundError as exc:
        _handle_region_error(exc)


@router.get(
    "/{region_id}/boundaries",
    response_model=LegacyBoundaryListRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def list_boundary_history(region_id: int, service: Service) -> LegacyBoundaryListRead:
    try:
        rows = service.boundary_history(region_id)
    except NotFoundError as exc:
        _handle_region_error(exc)
    return LegacyBoundaryListRead(
        boundaries=[LegacyBoundaryRead.model_validate(row) for row in rows],
        total=len(rows),
    )


@router.put(
    "/{region_id}/users/{user_id}",
    response_model=UserRegionRead,
    dependencies=[Depends(require_perm(PERM_REGION_WRITE))],
)
def grant_region_access(region_id: int, user_id: int, claims: Claims, service: Service) -> UserRegionRead:
    try:
        grant = service.grant_access(region_id, user_id, int(claims["sub"]))
    except NotFoundError as exc:
        _handle_region_error(exc)
    return UserRegionRead.model_validate(grant)


@router.delete(
    "/{region_id}/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGION_WRITE))],
)
def revoke_region_access(region_id: int, user_id: int, service: Service) -> Response:
    try:
        service.revoke_access(region_id, user_id)
    except NotFoundError as exc:
        _handle_region_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
