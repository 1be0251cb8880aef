from __future__ import annotations

from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_current_actor, require_perm
from app.domain.models import (
    BoundaryDataDeleteRead,
    BoundaryDraftRead,
    BoundaryDraftUpsert,
    BoundaryVersionListRead,
    BoundaryVersionRead,
    DraftEnvelopeRead,
    DraftFromVersionRead,
    DraftSaveRead,
    ImpactReportRead,
    InfrastructureHistoryPageRead,
    InfrastructureHistoryRead,
    PublishRequest,
    PublishResultRead,
    RollbackRequest,
    RollbackResultRead,
    UnpublishRequest,
    UnpublishResultRead,
    VersionDeleteRequest,
)
from app.domain.permissions import PERM_BOUNDARY_READ, PERM_BOUNDARY_WRITE, Actor
from app.infra.audit import set_audit_context
from app.infra.broadcast import broadcast_safely
from app.services.boundary_impact_service import BoundaryImpactService
from app.services.boundary_publish_service import BoundaryPublishService
from app.services.boundary_version_service import (
    BoundaryError,
    BoundaryVersionService,
    ConflictError,
    ForbiddenError,
    InvalidGeometryError,
    NotFoundError,
    RollbackWindowExpiredError,
    StoreError,
    ValidationError,
)

router = APIRouter()


def get_version_service() -> BoundaryVersionService:
    return BoundaryVersionService()


def get_impact_service() -> BoundaryImpactService:
    return BoundaryImpactService()


def get_publish_service() -> BoundaryPublishService:
    return BoundaryPublishService()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
VersionService = Annotated[BoundaryVersionService, Depends(get_version_service)]
ImpactService = Annotated[BoundaryImpactService, Depends(get_impact_service)]
PublishService = Annotated[BoundaryPublishService, Depends(get_publish_service)]


def _handle_boundary_error(exc: BoundaryError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient privilege") from exc
    if isinstance(exc, (InvalidGeometryError, ValidationError, RollbackWindowExpiredError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, StoreError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


@router.get(
    "/regions/{region_id}/boundary-version/draft",
    response_model=DraftEnvelopeRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def get_draft(region_id: int, service: VersionService) -> DraftEnvelopeRead:
    draft = service.get_draft(region_id)
    return DraftEnvelopeRead(draft=BoundaryDraftRead.model_validate(draft) if draft is not None else None)


@router.post(
    "/regions/{region_id}/boundary-version/draft",
    response_model=DraftSaveRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def save_draft(
    region_id: int,
    payload: BoundaryDraftUpsert,
    request: Request,
    actor: CurrentActor,
    service: VersionService,
) -> DraftSaveRead:
    try:
        draft, created = service.upsert_draft(region_id, payload, actor.user_id)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    set_audit_context(
        request,
        action="boundary.draft.save",
        resource="region_boundary",
        detail={"what": {"region_id": region_id, "draft_id": draft.id, "created": created}},
    )
    return DraftSaveRead(created=created, draft=BoundaryVersionRead.model_validate(draft))


@router.delete(
    "/regions/{region_id}/boundary-version/draft",
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def discard_draft(region_id: int, actor: CurrentActor, service: VersionService) -> dict[str, str]:
    try:
        service.discard_draft(region_id, actor.user_id)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    return {"message": "Draft discarded"}


@router.post(
    "/regions/{region_id}/boundary-version/{version_id}/edit",
    response_model=DraftFromVersionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def edit_from_version(
    region_id: int,
    version_id: int,
    actor: CurrentActor,
    service: VersionService,
) -> DraftFromVersionRead:
    try:
        draft, source_number = service.create_draft_from_version(region_id, version_id, actor.user_id)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    return DraftFromVersionRead(
        source_version_number=source_number,
        draft=BoundaryVersionRead.model_validate(draft),
    )


@router.post(
    "/regions/{region_id}/boundary-version/draft/analyze-impact",
    response_model=ImpactReportRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def analyze_impact(region_id: int, service: ImpactService) -> ImpactReportRead:
    try:
        return service.analyze(region_id)
    except BoundaryError as exc:
        _handle_boundary_error(exc)


@router.post(
    "/regions/{region_id}/boundary-version/draft/publish",
    response_model=PublishResultRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
async def publish_draft(
    region_id: int,
    request: Request,
    actor: CurrentActor,
    service: PublishService,
    payload: Annotated[PublishRequest | None, Body()] = None,
) -> PublishResultRead:
    payload = payload or PublishRequest()
    try:
        change = await run_in_threadpool(
            service.publish,
            region_id,
            payload.publish_reason,
            payload.notify_users,
            actor,
        )
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    set_audit_context(
        request,
        action="boundary.publish",
        resource="region_boundary",
        detail={"what": {"region_id": region_id, "version_id": change.result["version_id"]}},
    )
    await broadcast_safely(change.live_event, change.live_data)
    return PublishResultRead.model_validate(change.result)


@router.post(
    "/regions/{region_id}/boundary-version/unpublish",
    response_model=UnpublishResultRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def unpublish_boundary(
    region_id: int,
    actor: CurrentActor,
    service: PublishService,
    payload: Annotated[UnpublishRequest | None, Body()] = None,
) -> UnpublishResultRead:
    reason = payload.unpublish_reason if payload is not None else None
    try:
        result = service.unpublish(region_id, reason, actor)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    return UnpublishResultRead.model_validate(result)


@router.post(
    "/regions/{region_id}/boundary-version/{version_id}/rollback",
    response_model=RollbackResultRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
async def rollback_version(
    region_id: int,
    version_id: int,
    request: Request,
    actor: CurrentActor,
    service: PublishService,
    payload: Annotated[RollbackRequest | None, Body()] = None,
) -> RollbackResultRead:
    reason = payload.rollback_reason if payload is not None else None
    try:
        change = await run_in_threadpool(service.rollback, region_id, version_id, reason, actor)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    set_audit_context(
        request,
        action="boundary.rollback",
        resource="region_boundary",
        detail={"what": {"region_id": region_id, "target_version_id": version_id}},
    )
    await broadcast_safely(change.live_event, change.live_data)
    return RollbackResultRead.model_validate(change.result)


@router.get(
    "/regions/{region_id}/boundary-versions",
    response_model=BoundaryVersionListRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def list_versions(region_id: int, service: VersionService) -> BoundaryVersionListRead:
    versions = [BoundaryVersionRead.model_validate(row) for row in service.list_versions(region_id)]
    return BoundaryVersionListRead(versions=versions, total=len(versions))


@router.delete(
    "/regions/{region_id}/boundary-version/{version_id}",
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def delete_version(
    region_id: int,
    version_id: int,
    actor: CurrentActor,
    service: VersionService,
    payload: Annotated[VersionDeleteRequest | None, Body()] = None,
) -> dict[str, Any]:
    reason = payload.delete_reason if payload is not None else None
    try:
        version = service.delete_version(region_id, version_id, reason, actor.user_id)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    return {
        "message": f"Version {version.version_number} deleted",
        "version_id": version.id,
        "version_number": version.version_number,
    }


@router.delete(
    "/regions/{region_id}/boundary-data",
    response_model=BoundaryDataDeleteRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_WRITE))],
)
def delete_boundary_data(
    region_id: int,
    actor: CurrentActor,
    service: VersionService,
    payload: Annotated[VersionDeleteRequest | None, Body()] = None,
) -> BoundaryDataDeleteRead:
    reason = payload.delete_reason if payload is not None else None
    try:
        counts = service.delete_all_boundary_data(region_id, reason, actor)
    except BoundaryError as exc:
        _handle_boundary_error(exc)
    return BoundaryDataDeleteRead.model_validate(counts)


@router.get(
    "/regions/{region_id}/infrastructure-history",
    response_model=InfrastructureHistoryPageRead,
    dependencies=[Depends(require_perm(PERM_BOUNDARY_READ))],
)
def list_infrastructure_history(
    region_id: int,
    service: VersionService,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> InfrastructureHistoryPageRead:
    rows, total = service.list_infrastructure_history(region_id, limit=limit, offset=offset)
    return InfrastructureHistoryPageRead(
        history=[InfrastructureHistoryRead.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
