from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from app.domain.models import (
    BoundaryVersion,
    InfrastructureItem,
    InfrastructureRegionHistory,
    Region,
    RegionBoundary,
    now_utc,
)
from app.domain.permissions import Actor
from app.domain.state_machine import BoundaryStatus, can_transition
from app.infra.audit import write_audit_log
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.boundary_impact_service import ImpactClassification, classify, impact_snapshot
from app.services.boundary_version_service import (
    AUDIT_RESOURCE,
    DEFAULT_CHANGE_REASON,
    ConflictError,
    ForbiddenError,
    NoDraftError,
    NotFoundError,
    RollbackWindowExpiredError,
    StoreError,
    as_utc,
    find_draft,
    find_published,
    lock_region,
    next_version_number,
)
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ROLLBACK_WINDOW_DAYS = int(os.getenv("BOUNDARY_ROLLBACK_WINDOW_DAYS", "30"))
LIVE_EVENT_PUBLISHED = "boundary_published"
LIVE_EVENT_ROLLED_BACK = "boundary_rolled_back"


@dataclass
class BoundaryChange:
    """Result of a committed publish or rollback plus the live event it fans out."""

    result: dict[str, Any]
    live_event: str
    live_data: dict[str, Any] = field(default_factory=dict)


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("insufficient privilege")


def _set_status(version: BoundaryVersion, target: BoundaryStatus) -> None:
    if not can_transition(BoundaryStatus(version.status), target):
        raise ConflictError(f"cannot move version {version.version_number} from {version.status} to {target}")
    version.status = target


class BoundaryPublishService:
    def __init__(self, rollback_window: timedelta | None = None) -> None:
        self._rollback_window = rollback_window or timedelta(days=ROLLBACK_WINDOW_DAYS)
        self._notifications = NotificationService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _history(
        self,
        item: InfrastructureItem,
        *,
        new_region_id: int | None,
        version: BoundaryVersion,
        actor: Actor,
        changed_at: datetime,
        reason: str,
    ) -> InfrastructureRegionHistory:
        return InfrastructureRegionHistory(
            infrastructure_id=item.id,
            old_region_id=item.region_id,
            new_region_id=new_region_id,
            boundary_version_id=version.id,
            version_number=version.version_number,
            changed_by=actor.user_id,
            changed_at=changed_at,
            change_reason=reason,
            is_invalid=new_region_id is None,
            can_rollback=True,
            rollback_expires_at=changed_at + self._rollback_window,
        )

    def _reassign(
        self,
        session: Session,
        region_id: int,
        impact: ImpactClassification,
        version: BoundaryVersion,
        actor: Actor,
        changed_at: datetime,
        reason: str,
    ) -> int:
        moves: list[tuple[InfrastructureItem, int | None]] = [
            *impact.leaving,
            *[(item, region_id) for item in impact.entering],
        ]
        for item, new_region_id in moves:
            session.add(
                self._history(
                    item,
                    new_region_id=new_region_id,
                    version=version,
                    actor=actor,
                    changed_at=changed_at,
                    reason=reason,
                )
            )
            item.region_id = new_region_id
            session.add(item)
        return sum(1 for _, new_region_id in moves if new_region_id is not None)

    def _mirror_legacy(self, session: Session, version: BoundaryVersion, actor: Actor) -> None:
        session.execute(
            sa.update(RegionBoundary)
            .where(col(RegionBoundary.region_id) == version.region_id)
            .where(col(RegionBoundary.is_active).is_(True))
            .values(is_active=False)
        )
        session.add(
            RegionBoundary(
                region_id=version.region_id,
                boundary_geojson=version.boundary_geojson,
                boundary_type=version.boundary_type,
                version=version.version_number,
                vertex_count=version.vertex_count,
                area_sqkm=version.area_sqkm,
                created_by=actor.user_id,
                source=version.source,
                notes=version.notes,
                is_active=True,
            )
        )

    def _archive_published(self, session: Session, region_id: int) -> BoundaryVersion | None:
        current = find_published(session, region_id, lock=True)
        if current is not None:
            _set_status(current, BoundaryStatus.ARCHIVED)
            session.add(current)
            session.flush()
        return current

    def _fail(self, session: Session, what: str, exc: SQLAlchemyError) -> StoreError:
        session.rollback()
        logger.exception("%s failed; transaction rolled back", what)
        return StoreError(f"failed to {what}")

    def publish(
        self,
        region_id: int,
        publish_reason: str | None,
        notify_users: bool,
        actor: Actor,
    ) -> BoundaryChange:
        _require_admin(actor)
        with self._session() as session:
            region = lock_region(session, region_id)
            draft = find_draft(session, region_id, lock=True)
            if draft is None:
                raise NoDraftError("No draft boundary exists for this region")
            published_at = now_utc()
            reason = publish_reason or DEFAULT_CHANGE_REASON
            try:
                impact = classify(session, region_id, draft)
                previous = self._archive_published(session, region_id)

                _set_status(draft, BoundaryStatus.PUBLISHED)
                draft.published_by = actor.user_id
                draft.published_at = published_at
                draft.change_reason = reason
                draft.impact_summary = impact_snapshot(impact, timestamp=published_at.isoformat())
                session.add(draft)
                session.flush()

                items_updated = self._reassign(
                    session, region_id, impact, draft, actor, published_at, reason
                )
                self._mirror_legacy(session, draft, actor)
                write_audit_log(
                    actor_id=actor.user_id,
                    action="PUBLISH_BOUNDARY",
                    resource=AUDIT_RESOURCE,
                    resource_id=region_id,
                    detail={
                        "version_id": draft.id,
                        "version_number": draft.version_number,
                        "archived_version_id": previous.id if previous is not None else None,
                        "items_updated": items_updated,
                        "items_becoming_invalid": len(impact.becoming_invalid),
                        "publish_reason": reason,
                    },
                    session=session,
                )
                session.commit()
            except SQLAlchemyError as exc:
                raise self._fail(session, "publish boundary", exc) from exc

        logger.info(
            "published boundary v%s for region %s (%d item(s) reassigned)",
            draft.version_number,
            region_id,
            items_updated,
        )
        self._after_publish(region, draft, impact, notify_users, actor)
        return BoundaryChange(
            result={
                "version_id": draft.id,
                "version_number": draft.version_number,
                "region_id": region_id,
                "published_at": published_at,
                "impact": {
                    "total_affected": impact.total_affected,
                    "items_updated": items_updated,
                    "items_becoming_invalid": len(impact.becoming_invalid),
                },
                "rollback_expires_at": published_at + self._rollback_window,
            },
            live_event=LIVE_EVENT_PUBLISHED,
            live_data={
                "regionId": region_id,
                "regionName": region.name,
                "versionNumber": draft.version_number,
                "publishedAt": published_at.isoformat(),
                "itemsAffected": items_updated + len(impact.becoming_invalid),
            },
        )

    def _after_publish(
        self,
        region: Region,
        version: BoundaryVersion,
        impact: ImpactClassification,
        notify_users: bool,
        actor: Actor,
    ) -> None:
        if notify_users and impact.affected_users:
            try:
                self._notifications.notify_users(
                    [user.id for user in impact.affected_users if user.id is not None],
                    title="Region Boundary Updated",
                    message=(
                        f"The boundary for {region.name} has been updated to version "
                        f"{version.version_number}. {impact.total_affected} infrastructure "
                        "item(s) were affected."
                    ),
                )
            except Exception:
                logger.exception("boundary notifications for region %s failed", region.id)
        try:
            event_bus.publish_dict(
                "boundary.published",
                {
                    "region_id": region.id,
                    "version_id": version.id,
                    "version_number": version.version_number,
                    **impact.counts(),
                },
                actor_id=str(actor.user_id),
            )
        except Exception:
            logger.exception("boundary.published event for region %s failed", region.id)

    def unpublish(self, region_id: int, reason: str | None, actor: Actor) -> dict[str, Any]:
        _require_admin(actor)
        with self._session() as session:
            lock_region(session, region_id)
            archived_at = now_utc()
            current = find_published(session, region_id, lock=True)
            if current is None:
                raise NotFoundError("No published boundary exists for this region")
            try:
                _set_status(current, BoundaryStatus.ARCHIVED)
                session.add(current)
                session.execute(
                    sa.update(RegionBoundary)
                    .where(col(RegionBoundary.region_id) == region_id)
                    .where(col(RegionBoundary.is_active).is_(True))
                    .values(is_active=False)
                )
                write_audit_log(
                    actor_id=actor.user_id,
                    action="UNPUBLISH_BOUNDARY",
                    resource=AUDIT_RESOURCE,
                    resource_id=region_id,
                    detail={
                        "version_id": current.id,
                        "version_number": current.version_number,
                        "unpublish_reason": reason or "No reason provided",
                    },
                    session=session,
                )
                session.commit()
            except SQLAlchemyError as exc:
                raise self._fail(session, "unpublish boundary", exc) from exc
        return {
            "version_id": current.id,
            "version_number": current.version_number,
            "archived_at": archived_at,
        }

    def rollback(
        self,
        region_id: int,
        target_version_id: int,
        rollback_reason: str | None,
        actor: Actor,
    ) -> BoundaryChange:
        _require_admin(actor)
        with self._session() as session:
            region = lock_region(session, region_id)
            target = session.exec(
                select(BoundaryVersion)
                .where(BoundaryVersion.id == target_version_id)
                .where(BoundaryVersion.region_id == region_id)
                .where(BoundaryVersion.status == BoundaryStatus.ARCHIVED)
            ).first()
            if target is None:
                raise NotFoundError("Archived version not found")
            now = now_utc()
            if target.published_at is None or as_utc(target.published_at) < now - self._rollback_window:
                raise RollbackWindowExpiredError(
                    f"Rollback window of {self._rollback_window.days} days has expired for this version"
                )

            change_reason = f"Rolled back from version {target.version_number}"
            try:
                self._archive_published(session, region_id)
                restored = BoundaryVersion(
                    region_id=region_id,
                    boundary_geojson=dict(target.boundary_geojson),
                    boundary_type=target.boundary_type,
                    vertex_count=target.vertex_count,
                    area_sqkm=target.area_sqkm,
                    version_number=next_version_number(session, region_id),
                    status=BoundaryStatus.PUBLISHED,
                    created_by=actor.user_id,
                    published_by=actor.user_id,
                    published_at=now,
                    notes=rollback_reason,
                    change_reason=change_reason,
                    source=target.source,
                )
                session.add(restored)
                session.flush()

                reverted = self._revert_history(session, region_id, target, restored, actor, now)
                restored.impact_summary = {
                    "rolled_back_from": target.version_number,
                    "items_rolled_back": reverted,
                    "timestamp": now.isoformat(),
                }
                session.add(restored)
                self._mirror_legacy(session, restored, actor)
                write_audit_log(
                    actor_id=actor.user_id,
                    action="ROLLBACK_BOUNDARY",
                    resource=AUDIT_RESOURCE,
                    resource_id=region_id,
                    detail={
                        "target_version_id": target.id,
                        "target_version_number": target.version_number,
                        "new_version_id": restored.id,
                        "new_version_number": restored.version_number,
                        "items_rolled_back": reverted,
                        "rollback_reason": rollback_reason,
                    },
                    session=session,
                )
                session.commit()
            except SQLAlchemyError as exc:
                raise self._fail(session, "roll back boundary", exc) from exc

        logger.info(
            "rolled back region %s to v%s as v%s (%d item(s) restored)",
            region_id,
            target.version_number,
            restored.version_number,
            reverted,
        )
        try:
            event_bus.publish_dict(
                "boundary.rolled_back",
                {
                    "region_id": region_id,
                    "target_version_number": target.version_number,
                    "new_version_id": restored.id,
                    "new_version_number": restored.version_number,
                    "items_rolled_back": reverted,
                },
                actor_id=str(actor.user_id),
            )
        except Exception:
            logger.exception("boundary.rolled_back event for region %s failed", region_id)

        return BoundaryChange(
            result={
                "new_version_id": restored.id,
                "new_version_number": restored.version_number,
                "target_version_number": target.version_number,
                "items_rolled_back": reverted,
            },
            live_event=LIVE_EVENT_ROLLED_BACK,
            live_data={
                "regionId": region_id,
                "regionName": region.name,
                "versionNumber": restored.version_number,
                "rolledBackFrom": target.version_number,
                "itemsAffected": reverted,
            },
        )

    def _revert_history(
        self,
        session: Session,
        region_id: int,
        target: BoundaryVersion,
        restored: BoundaryVersion,
        actor: Actor,
        now: datetime,
    ) -> int:
        newer_versions = select(BoundaryVersion.id).where(
            BoundaryVersion.region_id == region_id,
            BoundaryVersion.version_number > target.version_number,
        )
        rows = session.exec(
            select(InfrastructureRegionHistory)
            .where(col(InfrastructureRegionHistory.boundary_version_id).in_(newer_versions))
            .where(col(InfrastructureRegionHistory.can_rollback).is_(True))
            .order_by(col(InfrastructureRegionHistory.changed_at).desc(), col(InfrastructureRegionHistory.id).desc())
            .with_for_update()
        ).all()

        restored_items: set[int] = set()
        for row in rows:
            if row.rollback_expires_at is None or as_utc(row.rollback_expires_at) <= now:
                continue
            item = session.get(InfrastructureItem, row.infrastructure_id)
            if item is None:
                continue
            row.can_rollback = False
            session.add(row)
            session.add(
                InfrastructureRegionHistory(
                    infrastructure_id=item.id,
                    old_region_id=row.new_region_id,
                    new_region_id=row.old_region_id,
                    boundary_version_id=restored.id,
                    version_number=restored.version_number,
                    changed_by=actor.user_id,
                    changed_at=now,
                    change_reason=f"Rollback to version {target.version_number}",
                    is_invalid=row.old_region_id is None,
                    can_rollback=False,
                )
            )
            item.region_id = row.old_region_id
            session.add(item)
            restored_items.add(item.id)
        return len(restored_items)
