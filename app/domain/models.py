from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.domain.state_machine import BoundaryStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource: str
    resource_id: str | None = Field(default=None, index=True)
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    full_name: str | None = None
    email: str | None = Field(default=None, index=True)
    role: str = Field(default="user", index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Region(SQLModel, table=True):
    __tablename__ = "regions"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    code: str | None = Field(default=None, index=True, unique=True)
    type: str = Field(default="state", index=True)
    parent_region_id: int | None = Field(default=None, foreign_key="regions.id", index=True)
    is_active: bool = Field(default=True, index=True)
    last_version_number: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRegion(SQLModel, table=True):
    __tablename__ = "user_regions"

    user_id: int = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    region_id: int = Field(foreign_key="regions.id", primary_key=True, ondelete="CASCADE")
    granted_by: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class BoundaryVersion(SQLModel, table=True):
    __tablename__ = "boundary_versions"
    __table_args__ = (
        UniqueConstraint("region_id", "version_number", name="uq_boundary_versions_region_version"),
        Index("ix_boundary_versions_region_status", "region_id", "status"),
        Index(
            "uq_boundary_versions_one_draft",
            "region_id",
            unique=True,
            postgresql_where=text("status = 'draft'"),
            sqlite_where=text("status = 'draft'"),
        ),
        Index(
            "uq_boundary_versions_one_published",
            "region_id",
            unique=True,
            postgresql_where=text("status = 'published'"),
            sqlite_where=text("status = 'published'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    region_id: int = Field(foreign_key="regions.id", index=True)
    boundary_geojson: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    boundary_type: str
    vertex_count: int = 0
    area_sqkm: float | None = None
    version_number: int
    status: str = Field(default=BoundaryStatus.DRAFT.value, max_length=20, index=True)
    created_by: int | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    published_by: int | None = None
    published_at: datetime | None = Field(default=None, index=True)
    notes: str | None = None
    change_reason: str | None = None
    source: str | None = None
    impact_summary: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )


class InfrastructureItem(SQLModel, table=True):
    __tablename__ = "infrastructure_items"

    id: int | None = Field(default=None, primary_key=True)
    item_name: str = Field(index=True)
    item_type: str = Field(default="site", index=True)
    latitude: float
    longitude: float
    region_id: int | None = Field(default=None, foreign_key="regions.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class InfrastructureRegionHistory(SQLModel, table=True):
    __tablename__ = "infrastructure_region_history"
    __table_args__ = (
        Index("ix_infra_region_history_version_rollback", "boundary_version_id", "can_rollback"),
    )

    id: int | None = Field(default=None, primary_key=True)
    infrastructure_id: int = Field(foreign_key="infrastructure_items.id", index=True)
    old_region_id: int | None = Field(default=None, index=True)
    new_region_id: int | None = Field(default=None, index=True)
    boundary_version_id: int | None = Field(default=None, index=True)
    version_number: int
    changed_by: int | None = None
    changed_at: datetime = Field(default_factory=now_utc, index=True)
    change_reason: str | None = None
    is_invalid: bool = False
    can_rollback: bool = False
    rollback_expires_at: datetime | None = None


class RegionBoundary(SQLModel, table=True):
    __tablename__ = "region_boundaries"

    id: int | None = Field(default=None, primary_key=True)
    region_id: int = Field(foreign_key="regions.id", index=True)
    boundary_geojson: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    boundary_type: str
    version: int
    vertex_count: int = 0
    area_sqkm: float | None = None
    created_by: int | None = None
    source: str | None = None
    notes: str | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    type: str = Field(default="system_alert", index=True)
    title: str
    message: str
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RegionCreate(BaseModel):
    name: str
    code: str | None = None
    type: str = "state"
    parent_region_id: int | None = None


class RegionRead(ORMReadModel):
    id: int
    name: str
    code: str | None
    type: str
    parent_region_id: int | None
    is_active: bool
    created_at: datetime


class UserRegionRead(ORMReadModel):
    user_id: int
    region_id: int
    granted_by: int | None
    created_at: datetime


class BoundaryDraftUpsert(BaseModel):
    boundary_geojson: Any = PydanticField(alias="boundaryGeoJSON")
    change_reason: str | None = PydanticField(default=None, alias="changeReason")
    notes: str | None = None
    source: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class BoundaryVersionRead(ORMReadModel):
    id: int
    region_id: int
    boundary_type: str
    vertex_count: int
    area_sqkm: float | None
    version_number: int
    status: BoundaryStatus
    created_by: int | None
    created_at: datetime
    published_by: int | None
    published_at: datetime | None
    notes: str | None
    change_reason: str | None
    source: str | None
    impact_summary: dict[str, Any] | None


class BoundaryDraftRead(BoundaryVersionRead):
    boundary_geojson: dict[str, Any]


class DraftEnvelopeRead(BaseModel):
    draft: BoundaryDraftRead | None


class DraftSaveRead(BaseModel):
    created: bool
    draft: BoundaryVersionRead


class DraftFromVersionRead(BaseModel):
    source_version_number: int
    draft: BoundaryVersionRead


class BoundaryVersionListRead(BaseModel):
    versions: list[BoundaryVersionRead]
    total: int


class VersionDeleteRequest(BaseModel):
    delete_reason: str | None = PydanticField(default=None, alias="deleteReason")

    model_config = ConfigDict(populate_by_name=True)


class BoundaryDataDeleteRead(BaseModel):
    region_id: int
    versions: int
    history_records: int
    legacy_boundaries: int


class ImpactItemRead(BaseModel):
    id: int
    name: str
    type: str
    latitude: float
    longitude: float
    current_region_id: int | None = None
    new_region_id: int | None = None


class AffectedUserRead(ORMReadModel):
    id: int
    username: str
    full_name: str | None
    email: str | None
    role: str


class ImpactSummaryRead(BaseModel):
    total_affected: int
    staying: int
    leaving: int
    entering: int
    becoming_invalid: int
    affected_users_count: int


class ImpactReportRead(BaseModel):
    summary: ImpactSummaryRead
    staying_sample: list[ImpactItemRead]
    total_staying: int
    has_more_staying: bool
    leaving: list[ImpactItemRead]
    entering: list[ImpactItemRead]
    becoming_invalid: list[ImpactItemRead]
    affected_users: list[AffectedUserRead]


class PublishRequest(BaseModel):
    publish_reason: str | None = PydanticField(default=None, alias="publishReason")
    notify_users: bool = PydanticField(default=True, alias="notifyUsers")

    model_config = ConfigDict(populate_by_name=True)


class PublishImpactRead(BaseModel):
    total_affected: int
    items_updated: int
    items_becoming_invalid: int


class PublishResultRead(BaseModel):
    version_id: int
    version_number: int
    region_id: int
    published_at: datetime
    impact: PublishImpactRead
    rollback_expires_at: datetime


class RollbackRequest(BaseModel):
    rollback_reason: str | None = PydanticField(default=None, alias="rollbackReason")

    model_config = ConfigDict(populate_by_name=True)


class RollbackResultRead(BaseModel):
    new_version_id: int
    new_version_number: int
    target_version_number: int
    items_rolled_back: int


class UnpublishRequest(BaseModel):
    unpublish_reason: str | None = PydanticField(default=None, alias="unpublishReason")

    model_config = ConfigDict(populate_by_name=True)


class UnpublishResultRead(BaseModel):
    version_id: int
    version_number: int
    archived_at: datetime


class InfrastructureHistoryRead(ORMReadModel):
    id: int
    infrastructure_id: int
    old_region_id: int | None
    new_region_id: int | None
    boundary_version_id: int | None
    version_number: int
    changed_by: int | None
    changed_at: datetime
    change_reason: str | None
    is_invalid: bool
    can_rollback: bool
    rollback_expires_at: datetime | None


class InfrastructureHistoryPageRead(BaseModel):
    history: list[InfrastructureHistoryRead]
    total: int
    limit: int
    offset: int


class PublishedBoundaryRead(BaseModel):
    region_id: int
    region_name: str
    region_code: str | None
    region_type: str
    boundary_geojson: dict[str, Any]
    boundary_type: str
    vertex_count: int
    area_sqkm: float | None
    version_number: int
    published_at: datetime | None
    published_by: int | None


class PublishedBoundaryListRead(BaseModel):
    count: int
    boundaries: list[PublishedBoundaryRead]


class CurrentBoundaryRead(BaseModel):
    region_id: int
    boundary_geojson: dict[str, Any]
    boundary_type: str
    version_number: int
    vertex_count: int
    area_sqkm: float | None
    source: str | None
    notes: str | None
    change_reason: str | None = None
    created_by: int | None
    published_by: int | None = None
    published_at: datetime | None = None
    origin: str


class LegacyBoundaryRead(ORMReadModel):
    id: int
    region_id: int
    boundary_type: str
    version: int
    vertex_count: int
    area_sqkm: float | None
    created_by: int | None
    created_at: datetime
    is_active: bool
    source: str | None
    notes: str | None


class LegacyBoundaryListRead(BaseModel):
    boundaries: list[LegacyBoundaryRead]
    total: int


class NotificationRead(ORMReadModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime
