from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.geometry import centroid
from app.domain.models import BoundaryVersion, Region, RegionBoundary, RegionCreate, User, UserRegion
from app.domain.permissions import Actor
from app.domain.state_machine import BoundaryStatus
from app.infra.audit import write_audit_log
from app.infra.db import get_engine
from app.services.boundary_version_service import ConflictError, NotFoundError, find_published, get_region


class RegionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_region(self, payload: RegionCreate, actor_id: int) -> Region:
        with self._session() as session:
            if payload.parent_region_id is not None:
                get_region(session, payload.parent_region_id)
            region = Region(**payload.model_dump())
            session.add(region)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("region code already exists") from exc
            session.refresh(region)
            write_audit_log(
                actor_id=actor_id,
                action="CREATE_REGION",
                resource="regions",
                resource_id=region.id,
                detail={"name": region.name, "code": region.code, "type": region.type},
            )
            return region

    def list_regions(self, *, include_inactive: bool = False) -> list[Region]:
        statement = select(Region)
        if not include_inactive:
            statement = statement.where(col(Region.is_active).is_(True))
        with self._session() as session:
            return list(session.exec(statement.order_by(col(Region.name), col(Region.id))).all())

    def get_region(self, region_id: int) -> Region:
        with self._session() as session:
            return get_region(session, region_id)

    def grant_access(self, region_id: int, user_id: int, actor_id: int) -> UserRegion:
        with self._session() as session:
            get_region(session, region_id)
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            grant = session.get(UserRegion, (user_id, region_id))
            if grant is not None:
                return grant
            grant = UserRegion(user_id=user_id, region_id=region_id, granted_by=actor_id)
            session.add(grant)
            session.commit()
            session.refresh(grant)
            return grant

    def revoke_access(self, region_id: int, user_id: int) -> None:
        with self._session() as session:
            grant = session.get(UserRegion, (user_id, region_id))
            if grant is None:
                raise NotFoundError("region access grant not found")
            session.delete(grant)
            session.commit()

    def current_boundary(self, region_id: int) -> dict[str, Any]:
        """The region's published boundary, or the active mirrored row when none is published."""
        with self._session() as session:
            get_region(session, region_id)
            version = find_published(session, region_id)
            if version is not None:
                return {
                    "region_id": region_id,
                    "boundary_geojson": version.boundary_geojson,
                    "boundary_type": version.boundary_type,
                    "version_number": version.version_number,
                    "vertex_count": version.vertex_count,
                    "area_sqkm": version.area_sqkm,
                    "source": version.source,
                    "notes": version.notes,
                    "change_reason": version.change_reason,
                    "created_by": version.created_by,
                    "published_by": version.published_by,
                    "published_at": version.published_at,
                    "origin": "boundary_versions",
                }
            legacy = session.exec(
                select(RegionBoundary)
                .where(RegionBoundary.region_id == region_id)
                .where(col(RegionBoundary.is_active).is_(True))
                .order_by(col(RegionBoundary.version).desc())
            ).first()
        if legacy is None:
            raise NotFoundError("No boundary found for this region")
        return {
            "region_id": region_id,
            "boundary_geojson": legacy.boundary_geojson,
            "boundary_type": legacy.boundary_type,
            "version_number": legacy.version,
            "vertex_count": legacy.vertex_count,
            "area_sqkm": legacy.area_sqkm,
            "source": legacy.source,
            "notes": legacy.notes,
            "created_by": legacy.created_by,
            "origin": "region_boundaries",
        }

    def boundary_history(self, region_id: int) -> list[RegionBoundary]:
        with self._session() as session:
            get_region(session, region_id)
            return list(
                session.exec(
                    select(RegionBoundary)
                    .where(RegionBoundary.region_id == region_id)
                    .order_by(col(RegionBoundary.version).desc(), col(RegionBoundary.id).desc())
                ).all()
            )

    def _published_rows(self, session: Session, actor: Actor) -> list[tuple[BoundaryVersion, Region]]:
        statement = (
            select(BoundaryVersion, Region)
            .join(Region, col(Region.id) == col(BoundaryVersion.region_id))
            .where(BoundaryVersion.status == BoundaryStatus.PUBLISHED)
            .where(col(Region.is_active).is_(True))
        )
        if not actor.is_admin:
            granted = select(UserRegion.region_id).where(UserRegion.user_id == actor.user_id)
            statement = statement.where(col(BoundaryVersion.region_id).in_(granted))
        return list(session.exec(statement.order_by(col(Region.name), col(Region.id))).all())

    def list_published_boundaries(self, actor: Actor) -> list[dict[str, Any]]:
        with self._session() as session:
            rows = self._published_rows(session, actor)
        return [
            {
                "region_id": region.id,
                "region_name": region.name,
                "region_code": region.code,
                "region_type": region.type,
                "boundary_geojson": version.boundary_geojson,
                "boundary_type": version.boundary_type,
                "vertex_count": version.vertex_count,
                "area_sqkm": version.area_sqkm,
                "version_number": version.version_number,
                "published_at": version.published_at,
                "published_by": version.published_by,
            }
            for version, region in rows
        ]

    def export_feature_collection(self, actor: Actor) -> dict[str, Any]:
        with self._session() as session:
            rows = self._published_rows(session, actor)
        features = [
            {
                "type": "Feature",
                "id": region.id,
                "geometry": version.boundary_geojson,
                "properties": {
                    "regionId": region.id,
                    "regionName": region.name,
                    "regionCode": region.code,
                    "regionType": region.type,
                    "versionNumber": version.version_number,
                    "vertexCount": version.vertex_count,
                    "areaSqKm": version.area_sqkm,
                    "centroid": centroid(version.boundary_geojson),
                    "publishedAt": version.published_at.isoformat() if version.published_at else None,
                },
            }
            for version, region in rows
        ]
        return {"type": "FeatureCollection", "features": features}
