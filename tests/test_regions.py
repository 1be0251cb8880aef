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
from app.domain.models import AuditLog, BoundaryVersion, User
from app.infra import audit, db, events
from app.infra.auth import create_access_token


def _square(x0: float, y0: float, size: float) -> dict:
    return {
        "type": "Polygon",
        "coordinates": [[[x0, y0], [x0, y0 + size], [x0 + size, y0 + size], [x0 + size, y0], [x0, y0]]],
    }


@pytest.fixture()
def region_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "regions_test.db"
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
        session.add(User(id=3, username="viewer", role="user"))
        session.commit()
    return test_engine


@pytest.fixture()
def region_client(region_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(user_id: int, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id, role=role)}"}


ADMIN = _auth_header(1, "admin")
VIEWER = _auth_header(3, "user")


def _create_region(client: TestClient, name: str, code: str) -> int:
    response = client.post("/api/regions", json={"name": name, "code": code}, headers=ADMIN)
    assert response.status_code == 201
    return response.json()["id"]


def _publish_boundary(engine: Engine, region_id: int, geometry: dict) -> None:
    with Session(engine) as session:
        session.add(
            BoundaryVersion(
                region_id=region_id,
                boundary_geojson=geometry,
                boundary_type="Polygon",
                vertex_count=5,
                version_number=1,
                status="published",
                published_by=1,
                published_at=datetime.now(UTC),
            )
        )
        session.commit()


def test_region_crud_subset(region_client: TestClient, region_engine: Engine) -> None:
    parent_id = _create_region(region_client, "Coastal State", "CS")
    child = region_client.post(
        "/api/regions",
        json={"name": "Harbor District", "code": "HD", "type": "district", "parent_region_id": parent_id},
        headers=ADMIN,
    )
    assert child.status_code == 201
    assert child.json()["parent_region_id"] == parent_id

    duplicate = region_client.post("/api/regions", json={"name": "Other", "code": "CS"}, headers=ADMIN)
    assert duplicate.status_code == 409

    orphan = region_client.post(
        "/api/regions",
        json={"name": "Nowhere", "parent_region_id": 999},
        headers=ADMIN,
    )
    assert orphan.status_code == 404

    listing = region_client.get("/api/regions", headers=VIEWER)
    assert [row["name"] for row in listing.json()] == ["Coastal State", "Harbor District"]

    assert region_client.get(f"/api/regions/{parent_id}", headers=VIEWER).json()["code"] == "CS"
    assert region_client.get("/api/regions/999", headers=VIEWER).status_code == 404

    forbidden = region_client.post("/api/regions", json={"name": "Denied"}, headers=VIEWER)
    assert forbidden.status_code == 403

    with Session(region_engine) as session:
        created = session.exec(select(AuditLog).where(AuditLog.action == "CREATE_REGION")).all()
    assert len(created) == 2


def test_published_boundaries_respect_region_grants(region_client: TestClient, region_engine: Engine) -> None:
    north = _create_region(region_client, "North", "N")
    south = _create_region(region_client, "South", "S")
    _publish_boundary(region_engine, north, _square(0, 0, 10))
    _publish_boundary(region_engine, south, _square(0, -10, 10))

    assert region_client.get("/api/boundaries/published", headers=VIEWER).json() == {"count": 0, "boundaries": []}

    grant = region_client.put(f"/api/regions/{north}/users/3", headers=ADMIN)
    assert grant.status_code == 200
    assert grant.json()["granted_by"] == 1

    visible = region_client.get("/api/boundaries/published", headers=VIEWER).json()
    assert visible["count"] == 1
    assert visible["boundaries"][0]["region_name"] == "North"
    assert visible["boundaries"][0]["version_number"] == 1

    everything = region_client.get("/api/boundaries/published", headers=ADMIN).json()
    assert [row["region_code"] for row in everything["boundaries"]] == ["N", "S"]

    assert region_client.delete(f"/api/regions/{north}/users/3", headers=ADMIN).status_code == 204
    assert region_client.delete(f"/api/regions/{north}/users/3", headers=ADMIN).status_code == 404
    assert region_client.get("/api/boundaries/published", headers=VIEWER).json()["count"] == 0

    missing_user = region_client.put(f"/api/regions/{north}/users/42", headers=ADMIN)
    assert missing_user.status_code == 404


def test_export_feature_collection_is_admin_only(region_client: TestClient, region_engine: Engine) -> None:
    north = _create_region(region_client, "North", "N")
    _publish_boundary(region_engine, north, _square(0, 0, 10))

    assert region_client.get("/api/boundaries/export", headers=VIEWER).status_code == 403

    response = region_client.get("/api/boundaries/export", headers=ADMIN)
    assert response.status_code == 200
    collection = response.json()
    assert collection["type"] == "FeatureCollection"
    feature = collection["features"][0]
    assert feature["geometry"] == _square(0, 0, 10)
    assert feature["properties"]["regionName"] == "North"
    assert feature["properties"]["centroid"] == pytest.approx([5.0, 5.0])

    with Session(region_engine) as session:
        exported = session.exec(select(AuditLog).where(AuditLog.action == "boundary.export")).one()
    assert exported.detail["what"]["feature_count"] == 1
