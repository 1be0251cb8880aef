from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import BoundaryVersion, InfrastructureItem, Region, User, UserRegion
from app.infra import audit, db, events
from app.infra.auth import create_access_token
from app.services import boundary_impact_service
from app.services.boundary_impact_service import BoundaryImpactService

REGION_A = {"type": "Polygon", "coordinates": [[[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]]]}
DRAFT_B = {"type": "Polygon", "coordinates": [[[3, 3], [3, 10], [15, 10], [15, 3], [3, 3]]]}
SOUTH = {"type": "Polygon", "coordinates": [[[-5, -5], [-5, 2.5], [2.5, 2.5], [2.5, -5], [-5, -5]]]}


def _square_version(region_id: int, geometry: dict, version_number: int, status: str) -> BoundaryVersion:
    return BoundaryVersion(
        region_id=region_id,
        boundary_geojson=geometry,
        boundary_type=geometry["type"],
        vertex_count=5,
        version_number=version_number,
        status=status,
        published_at=datetime.now(UTC) if status == "published" else None,
    )


@pytest.fixture()
def impact_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "impact_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)

    with Session(test_engine) as session:
        session.add(User(id=1, username="admin", role="admin"))
        session.add(User(id=2, username="field-lead", full_name="Field Lead", email="lead@example.org"))
        session.add(User(id=3, username="retired", is_active=False))
        session.add(Region(id=1, name="North"))
        session.add(Region(id=2, name="South"))
        session.flush()
        session.add(UserRegion(user_id=2, region_id=1))
        session.add(UserRegion(user_id=3, region_id=1))
        session.add(_square_version(1, REGION_A, 1, "published"))
        session.add(_square_version(1, DRAFT_B, 2, "draft"))
        session.add(InfrastructureItem(id=1, item_name="pump-1", longitude=1, latitude=1, region_id=1))
        session.add(InfrastructureItem(id=2, item_name="tower-2", longitude=5, latitude=5, region_id=1))
        session.add(InfrastructureItem(id=3, item_name="tower-3", longitude=6, latitude=6, region_id=1))
        session.add(InfrastructureItem(id=4, item_name="depot-4", longitude=12, latitude=5, region_id=None))
        session.add(InfrastructureItem(id=5, item_name="far-5", longitude=50, latitude=50, region_id=None))
        session.commit()
    return test_engine


@pytest.fixture()
def impact_client(impact_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header() -> dict[str, str]:
    token = create_access_token(user_id=1, role="admin")
    return {"Authorization": f"Bearer {token}"}


def test_analyze_classifies_leaving_entering_staying(impact_client: TestClient) -> None:
    response = impact_client.post(
        "/api/regions/1/boundary-version/draft/analyze-impact",
        headers=_auth_header(),
    )
    assert response.status_code == 200
    report = response.json()

    assert report["summary"] == {
        "total_affected": 4,
        "staying": 2,
        "leaving": 1,
        "entering": 1,
        "becoming_invalid": 1,
        "affected_users_count": 1,
    }
    assert [item["id"] for item in report["leaving"]] == [1]
    assert [item["id"] for item in report["entering"]] == [4]
    assert [item["id"] for item in report["staying_sample"]] == [2, 3]
    assert [item["id"] for item in report["becoming_invalid"]] == [1]
    assert report["total_staying"] == 2
    assert report["has_more_staying"] is False
    assert [user["username"] for user in report["affected_users"]] == ["field-lead"]


def test_leaving_item_resolves_to_other_published_region(impact_client: TestClient, impact_engine: Engine) -> None:
    with Session(impact_engine) as session:
        session.add(_square_version(2, SOUTH, 1, "published"))
        session.commit()

    response = impact_client.post(
        "/api/regions/1/boundary-version/draft/analyze-impact",
        headers=_auth_header(),
    )
    report = response.json()
    assert report["leaving"][0]["id"] == 1
    assert report["leaving"][0]["new_region_id"] == 2
    assert report["becoming_invalid"] == []
    assert report["summary"]["becoming_invalid"] == 0


def test_analyze_is_read_only(impact_client: TestClient, impact_engine: Engine) -> None:
    for _ in range(2):
        assert (
            impact_client.post(
                "/api/regions/1/boundary-version/draft/analyze-impact",
                headers=_auth_header(),
            ).status_code
            == 200
        )
    with Session(impact_engine) as session:
        items = session.exec(select(InfrastructureItem).order_by(InfrastructureItem.id)).all()
        statuses = session.exec(select(BoundaryVersion.status).order_by(BoundaryVersion.version_number)).all()
    assert [item.region_id for item in items] == [1, 1, 1, None, None]
    assert statuses == ["published", "draft"]


def test_analyze_without_draft_is_404(impact_client: TestClient) -> None:
    response = impact_client.post(
        "/api/regions/2/boundary-version/draft/analyze-impact",
        headers=_auth_header(),
    )
    assert response.status_code == 404


def test_staying_sample_is_capped(impact_engine: Engine) -> None:
    report = BoundaryImpactService(staying_sample_limit=1).analyze(1)
    assert len(report.staying_sample) == 1
    assert report.total_staying == 2
    assert report.has_more_staying is True


def test_only_items_near_the_draft_are_ray_cast(impact_engine: Engine, monkeypatch: pytest.MonkeyPatch) -> None:
    checked: list[tuple[float, float]] = []
    real_contains = boundary_impact_service.contains

    def _recording_contains(point: list[float], geometry: dict) -> bool:
        checked.append((point[0], point[1]))
        return real_contains(point, geometry)

    monkeypatch.setattr(boundary_impact_service, "contains", _recording_contains)
    report = BoundaryImpactService().analyze(1)

    assert (50, 50) not in checked
    assert sorted(checked) == [(1, 1), (5, 5), (6, 6), (12, 5)]
    assert report.summary.total_affected == 4
