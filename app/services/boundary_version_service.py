from __future__ import annotations

import logging
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from app.domain.geometry import GeometryError, area_sqkm, validate_boundary_geojson, vertex_count
from app.domain.models import (
    BoundaryDraftUpsert,
    BoundaryVersion,
    InfrastructureRegionHistory,
    Region,
    RegionBoundary,
)
from app.domain.permissions import Actor
from app.domain.state_machine import BoundaryStatus
from app.infra.audit import write_audit_log
from app.infra.db import get_engine

logger = logging.getLogger(__name__)

AUDIT_RESOURCE = "region_boundary"
DEFAULT_CHANGE_REASON = "Boundary update"
DEFAULT_SOURCE = "Manual Edit"


class BoundaryError(Exception):
    pass


class NotFoundError(BoundaryError):
    pass


class NoDraftError(NotFoundError):
    pass


class ConflictError(BoundaryError):
    pass


class ForbiddenError(BoundaryError):
    pass


class InvalidGeometryError(BoundaryError):
    pass


class ValidationError(BoundaryError):
    pass


class RollbackWindowExpiredError(BoundaryError):
    pass


class StoreError(BoundaryError):
    pass


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def get_region(session: Session, region_id: int) -> Region:
    region = session.get(Region, region_id)
    if region is None:
        raise NotFoundError("region not found")
    return region


def lock_region(session: Session, region_id: int) -> Region:
    """Load the region row with `FOR UPDATE`.

    Every operation that creates, promotes or archives boundary versions takes
    this lock first so concurrent writers for one region run one at a time,
    even when the draft or published row they look for does not exist yet.
    """
    region = session.exec(select(Region).where(Region.id == region_id).with_for_update()).first()
    if region is None:
        raise NotFoundError("region not found")
    return region


def find_draft(session: Session, region_id: int, *, lock: bool = False) -> BoundaryVersion | None:
    statement = (
        select(BoundaryVersion)
        .where(BoundaryVersion.region_id == region_id)
        .where(BoundaryVersion.status == BoundaryStatus.DRAFT)
    )
    if lock:
        statement = statement.with_for_update()
    return session.exec(statement).first()


def find_published(session: Session, region_id: int, *, lock: bool = False) -> BoundaryVersion | None:
    statement = (
        select(BoundaryVersion)
        .where(BoundaryVersion.region_id == region_id)
        .where(BoundaryVersion.status == BoundaryStatus.PUBLISHED)
    )
    if lock:
        statement = statement.with_for_update()
    return session.exec(statement).first()


def next_version_number(session: Session, region_id: int) -> int:
    """Allocate the region's next version number.

    The counter lives on the region row so numbers of discarded drafts and
    deleted versions are never handed out again.
    """
    region = lock_region(session, region_id)
    latest = session.exec(
        select(func.max(BoundaryVersion.version_number)).where(BoundaryVersion.region_id == region_id)
    ).one()
    number = max(region.last_version_number, int(latest or 0)) + 1
    region.last_version_number = number
    session.add(region)
    return number


class BoundaryVersionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _commit(self, session: Session, what: str) -> None:
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("%s failed; transaction rolled back", what)
            raise StoreError(f"failed to {what}") from exc

    def _flush_version(self, session: Session, version: BoundaryVersion) -> None:
        session.add(version)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Another boundary change for this region is in progress. Retry.") from exc

    def get_draft(self, region_id: int) -> BoundaryVersion | None:
        with self._session() as session:
            return find_draft(session, region_id)

    def upsert_draft(
        self,
        region_id: int,
        payload: BoundaryDraftUpsert,
        actor_id: int,
    ) -> tuple[BoundaryVersion, bool]:
        geojson = payload.boundary_geojson
        try:
            validate_boundary_geojson(geojson)
        except GeometryError as exc:
            raise InvalidGeometryError(str(exc)) from exc

        change_reason = payload.change_reason or DEFAULT_CHANGE_REASON
        with self._session() as session:
            lock_region(session, region_id)
            draft = find_draft(session, region_id, lock=True)
            created = draft is None
            if draft is None:
                draft = BoundaryVersion(
                    region_id=region_id,
                    boundary_geojson=geojson,
                    boundary_type=geojson["type"],
                    version_number=next_version_number(session, region_id),
                    status=BoundaryStatus.DRAFT,
                    created_by=actor_id,
                )
            draft.boundary_geojson = geojson
            draft.boundary_type = geojson["type"]
            draft.vertex_count = vertex_count(geojson)
            draft.area_sqkm = area_sqkm(geojson)
            draft.notes = payload.notes
            draft.change_reason = change_reason
            draft.source = payload.source or DEFAULT_SOURCE
            self._flush_version(session, draft)
            write_audit_log(
                actor_id=actor_id,
                action="CREATE_DRAFT_BOUNDARY" if created else "UPDATE_DRAFT_BOUNDARY",
                resource=AUDIT_RESOURCE,
                resource_id=region_id,
                detail={
                    "draft_id": draft.id,
                    "version_number": draft.version_number,
                    "vertex_count": draft.vertex_count,
                    "change_reason": change_reason,
                },
                session=session,
            )
            self._commit(session, "save draft boundary")
            session.refresh(draft)
        return draft, created

    def discard_draft(self, region_id: int, actor_id: int) -> None:
        with self._session() as session:
            lock_region(session, region_id)
            draft = find_draft(session, region_id, lock=True)
            if draft is None:
                raise NoDraftError("No draft boundary exists for this region")
            write_audit_log(
                actor_id=actor_id,
                action="DISCARD_DRAFT_BOUNDARY",
                resource=AUDIT_RESOURCE,
                resource_id=region_id,
                detail={"draft_id": draft.id, "version_number": draft.version_number},
                session=session,
            )
            session.delete(draft)
            self._commit(session, "discard draft boundary")

    def create_draft_from_version(
        self,
        region_id: int,
        source_version_id: int,
        actor_id: int,
    ) -> tuple[BoundaryVersion, int]:
        with self._session() as session:
            lock_region(session, region_id)
            if find_draft(session, region_id, lock=True) is not None:
                raise ConflictError(
                    "A draft already exists for this region. Discard it first or continue editing."
                )
            source = session.exec(
                select(BoundaryVersion)
                .where(BoundaryVersion.id == source_version_id)
                .where(BoundaryVersion.region_id == region_id)
            ).first()
            if source is None:
                raise NotFoundError("Source version not found")

            draft = BoundaryVersion(
                region_id=region_id,
                boundary_geojson=dict(source.boundary_geojson),
                boundary_type=source.boundary_type,
                vertex_count=source.vertex_count,
                area_sqkm=source.area_sqkm,
                version_number=next_version_number(session, region_id),
                status=BoundaryStatus.DRAFT,
                created_by=actor_id,
                notes=f"Editing from Version {source.version_number}",
                change_reason=f"Create draft from version {source.version_number}",
                source="Version Copy",
            )
            self._flush_version(session, draft)
            write_audit_log(
                actor_id=actor_id,
                action="CREATE_DRAFT_FROM_VERSION",
                resource=AUDIT_RESOURCE,
                resource_id=region_id,
                detail={
                    "draft_id": draft.id,
                    "source_version_id": source.id,
                    "source_version_number": source.version_number,
                    "new_version_number": draft.version_number,
                },
                session=session,
            )
            self._commit(session, "create draft from version")
            session.refresh(draft)
            return draft, source.version_number

    def list_versions(self, region_id: int) -> list[BoundaryVersion]:
        with self._session() as session:
            return list(
                session.exec(
                    select(BoundaryVersion)
                    .where(BoundaryVersion.region_id == region_id)
                    .order_by(col(BoundaryVersion.version_number).desc())
                ).all()
            )

    def delete_version(
        self,
        region_id: int,
        version_id: int,
        reason: str | None,
        actor_id: int,
    ) -> BoundaryVersion:
        with self._session() as session:
            lock_region(session, region_id)
            version = session.exec(
                select(BoundaryVersion)
                .where(BoundaryVersion.id == version_id)
                .where(BoundaryVersion.region_id == region_id)
                .with_for_update()
            ).first()
            if version is None:
                raise NotFoundError("Boundary version not found")
            if version.status == BoundaryStatus.PUBLISHED:
                published_count = session.exec(
                    select(func.count())
                    .select_from(BoundaryVersion)
                    .where(BoundaryVersion.region_id == region_id)
                    .where(BoundaryVersion.status == BoundaryStatus.PUBLISHED)
                ).one()
                if published_count <= 1:
                    raise ForbiddenError(
                        "Cannot delete the only published version. Publish a new version first."
                    )
            write_audit_log(
                actor_id=actor_id,
                action="DELETE_BOUNDARY_VERSION",
                resource=AUDIT_RESOURCE,
                resource_id=region_id,
                detail={
                    "version_id": version.id,
                    "version_number": version.version_number,
                    "status": version.status,
                    "delete_reason": reason or "No reason provided",
                },
                session=session,
            )
            session.delete(version)
            self._commit(session, "delete boundary version")
        return version

    def delete_all_boundary_data(self, region_id: int, reason: str | None, actor: Actor) -> dict[str, int]:
        if not actor.is_admin:
            raise ForbiddenError("insufficient privilege")
        if reason is None or not reason.strip():
            raise ValidationError("Delete reason is required")

        with self._session() as session:
            lock_region(session, region_id)
            history_filter = or_(
                col(InfrastructureRegionHistory.old_region_id) == region_id,
                col(InfrastructureRegionHistory.new_region_id) == region_id,
            )
            history_count = session.exec(
                select(func.count()).select_from(InfrastructureRegionHistory).where(history_filter)
            ).one()
            version_count = session.exec(
                select(func.count()).select_from(BoundaryVersion).where(BoundaryVersion.region_id == region_id)
            ).one()
            legacy_count = session.exec(
                select(func.count()).select_from(RegionBoundary).where(RegionBoundary.region_id == region_id)
            ).one()

            session.execute(sa.delete(InfrastructureRegionHistory).where(history_filter))
            session.execute(sa.delete(BoundaryVersion).where(col(BoundaryVersion.region_id) == region_id))
            session.execute(sa.delete(RegionBoundary).where(col(RegionBoundary.region_id) == region_id))
            write_audit_log(
                actor_id=actor.user_id,
                action="DELETE_ALL_BOUNDARY_DATA",
                resource="region_boundaries",
                resource_id=region_id,
                detail={
                    "deleted_versions": version_count,
                    "deleted_history_records": history_count,
                    "deleted_legacy_boundaries": legacy_count,
                    "delete_reason": reason,
                },
                session=session,
            )
            self._commit(session, "delete boundary data")

        logger.info(
            "deleted all boundary data for region %s: %d versions, %d history rows",
            region_id,
            version_count,
            history_count,
        )
        return {
            "region_id": region_id,
            "versions": int(version_count),
            "history_records": int(history_count),
            "legacy_boundaries": int(legacy_count),
        }

    def list_infrastructure_history(
        self,
        region_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[InfrastructureRegionHistory], int]:
        history_filter = or_(
            col(InfrastructureRegionHistory.old_region_id) == region_id,
            col(InfrastructureRegionHistory.new_region_id) == region_id,
        )
        with self._session() as session:
            rows = list(
                session.exec(
                    select(InfrastructureRegionHistory)
                    .where(history_filter)
                    .order_by(
                        col(InfrastructureRegionHistory.changed_at).desc(),
                        col(InfrastructureRegionHistory.id).desc(),
                    )
                    .offset(offset)
                    .limit(limit)
                ).all()
            )
            total = session.exec(
                select(func.count()).select_from(InfrastructureRegionHistory).where(history_filter)
            ).one()
        return rows, int(total)

