from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, or_
from sqlmodel import Session, col, select

from app.domain.geometry import bounds, contains
from app.domain.models import (
    AffectedUserRead,
    BoundaryVersion,
    ImpactItemRead,
    ImpactReportRead,
    ImpactSummaryRead,
    InfrastructureItem,
    User,
    UserRegion,
)
from app.domain.state_machine import BoundaryStatus
from app.infra.db import get_engine
from app.services.boundary_version_service import NoDraftError, find_draft

STAYING_SAMPLE_LIMIT = int(os.getenv("BOUNDARY_STAYING_SAMPLE_LIMIT", "100"))


@dataclass
class ImpactClassification:
    """Where each candidate item ends up if ``draft`` is published.

    ``leaving`` pairs every item that drops out of the region with the first
    other region whose published boundary contains it, or ``None`` when no
    boundary claims it (those are also reported as ``becoming_invalid``).
    """

    staying: list[InfrastructureItem] = field(default_factory=list)
    entering: list[InfrastructureItem] = field(default_factory=list)
    leaving: list[tuple[InfrastructureItem, int | None]] = field(default_factory=list)
    affected_users: list[User] = field(default_factory=list)

    @property
    def becoming_invalid(self) -> list[InfrastructureItem]:
        return [item for item, new_region_id in self.leaving if new_region_id is None]

    @property
    def total_affected(self) -> int:
        return len(self.staying) + len(self.leaving) + len(self.entering)

    def counts(self) -> dict[str, int]:
        return {
            "total_affected": self.total_affected,
            "staying": len(self.staying),
            "leaving": len(self.leaving),
            "entering": len(self.entering),
            "becoming_invalid": len(self.becoming_invalid),
            "affected_users_count": len(self.affected_users),
        }


def _item_point(item: InfrastructureItem) -> list[float]:
    return [item.longitude, item.latitude]


def _other_published(session: Session, region_id: int) -> list[BoundaryVersion]:
    return list(
        session.exec(
            select(BoundaryVersion)
            .where(BoundaryVersion.status == BoundaryStatus.PUBLISHED)
            .where(BoundaryVersion.region_id != region_id)
            .order_by(col(BoundaryVersion.id))
        ).all()
    )


def _affected_users(session: Session, region_id: int) -> list[User]:
    return list(
        session.exec(
            select(User)
            .join(UserRegion, col(UserRegion.user_id) == col(User.id))
            .where(UserRegion.region_id == region_id)
            .where(col(User.is_active).is_(True))
            .order_by(col(User.id))
        ).all()
    )


def _candidate_query(region_id: int, geometry: dict[str, Any]) -> Any:
    """Items already in the region plus items inside the draft's bounding box."""
    in_region = col(InfrastructureItem.region_id) == region_id
    box = bounds(geometry)
    if box is None:
        condition = in_region
    else:
        min_lng, min_lat, max_lng, max_lat = box
        condition = or_(
            in_region,
            and_(
                col(InfrastructureItem.longitude).between(min_lng, max_lng),
                col(InfrastructureItem.latitude).between(min_lat, max_lat),
            ),
        )
    return select(InfrastructureItem).where(condition).order_by(col(InfrastructureItem.id))


def classify(session: Session, region_id: int, draft: BoundaryVersion) -> ImpactClassification:
    geometry = draft.boundary_geojson
    result = ImpactClassification()
    candidates: list[tuple[InfrastructureItem, bool]] = []
    for item in session.exec(_candidate_query(region_id, geometry)).all():
        inside = contains(_item_point(item), geometry)
        if item.region_id == region_id or inside:
            candidates.append((item, inside))

    others: list[BoundaryVersion] | None = None
    for item, inside in candidates:
        in_region = item.region_id == region_id
        if in_region and inside:
            result.staying.append(item)
        elif inside:
            result.entering.append(item)
        else:
            if others is None:
                others = _other_published(session, region_id)
            match = next(
                (row.region_id for row in others if contains(_item_point(item), row.boundary_geojson)),
                None,
            )
            result.leaving.append((item, match))

    result.affected_users = _affected_users(session, region_id)
    return result


def _item_read(item: InfrastructureItem, new_region_id: int | None = None) -> ImpactItemRead:
    return ImpactItemRead(
        id=item.id,
        name=item.item_name,
        type=item.item_type,
        latitude=item.latitude,
        longitude=item.longitude,
        current_region_id=item.region_id,
        new_region_id=new_region_id,
    )


class BoundaryImpactService:
    def __init__(self, staying_sample_limit: int = STAYING_SAMPLE_LIMIT) -> None:
        self._staying_sample_limit = staying_sample_limit

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def analyze(self, region_id: int) -> ImpactReportRead:
        with self._session() as session:
            draft = find_draft(session, region_id)
            if draft is None:
                raise NoDraftError("No draft boundary exists for this region")
            result = classify(session, region_id, draft)

        summary = ImpactSummaryRead(**result.counts())
        return ImpactReportRead(
            summary=summary,
            staying_sample=[_item_read(item, region_id) for item in result.staying[: self._staying_sample_limit]],
            total_staying=len(result.staying),
            has_more_staying=len(result.staying) > self._staying_sample_limit,
            leaving=[_item_read(item, new_region_id) for item, new_region_id in result.leaving],
            entering=[_item_read(item, region_id) for item in result.entering],
            becoming_invalid=[_item_read(item) for item in result.becoming_invalid],
            affected_users=[AffectedUserRead.model_validate(user) for user in result.affected_users],
        )


def impact_snapshot(result: ImpactClassification, **extra: Any) -> dict[str, Any]:
    return {**result.counts(), **extra}
