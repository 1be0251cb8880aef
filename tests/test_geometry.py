from __future__ import annotations

import pytest

from app.domain.geometry import (
    GeometryError,
    area_sqkm,
    bounds,
    centroid,
    contains,
    validate_boundary_geojson,
    vertex_count,
)

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]]],
}


def test_square_contains_inner_point_only() -> None:
    assert contains([5, 5], SQUARE) is True
    assert contains([15, 15], SQUARE) is False
    assert contains([-1, 5], SQUARE) is False


def test_multipolygon_is_union_of_parts() -> None:
    geometry = {
        "type": "MultiPolygon",
        "coordinates": [
            [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
            [[[5, 5], [5, 6], [6, 6], [6, 5], [5, 5]]],
        ],
    }
    assert contains([0.5, 0.5], geometry)
    assert contains([5.5, 5.5], geometry)
    assert not contains([3, 3], geometry)


def test_holes_do_not_exclude_points() -> None:
    donut = {
        "type": "Polygon",
        "coordinates": [
            [[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]],
            [[4, 4], [4, 6], [6, 6], [6, 4], [4, 4]],
        ],
    }
    assert contains([5, 5], donut)


def test_unsupported_geometry_never_contains() -> None:
    assert not contains([0, 0], {"type": "Point", "coordinates": [0, 0]})


def test_vertex_count_includes_hole_rings() -> None:
    donut = {
        "type": "Polygon",
        "coordinates": [
            [[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]],
            [[4, 4], [4, 6], [6, 6], [4, 4]],
        ],
    }
    assert vertex_count(SQUARE) == 5
    assert vertex_count(donut) == 9


def test_area_and_centroid_metadata() -> None:
    one_degree = {
        "type": "Polygon",
        "coordinates": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
    }
    # Roughly 111 km x 111 km near the equator.
    assert 12000 < area_sqkm(one_degree) < 12500
    assert centroid(SQUARE) == pytest.approx([5.0, 5.0])
    assert centroid({"type": "Polygon", "coordinates": []}) is None


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"type": "Polygon"},
        {"type": "Point", "coordinates": [1, 2]},
        {"type": "Polygon", "coordinates": []},
        {"type": "Polygon", "coordinates": [[["a", 1]]]},
        {"type": "MultiPolygon", "coordinates": [[]]},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]},
    ],
)
def test_validate_rejects_malformed_boundaries(payload: object) -> None:
    with pytest.raises(GeometryError):
        validate_boundary_geojson(payload)


def test_validate_accepts_polygon_and_multipolygon() -> None:
    validate_boundary_geojson(SQUARE)
    validate_boundary_geojson({"type": "MultiPolygon", "coordinates": [SQUARE["coordinates"]]})


def test_area_subtracts_holes_regardless_of_winding() -> None:
    clockwise = {"type": "Polygon", "coordinates": [[[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]]]}
    counter_clockwise = {"type": "Polygon", "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]]}
    donut = {
        "type": "Polygon",
        "coordinates": [
            [[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]],
            [[0.5, 0.5], [0.5, 1.5], [1.5, 1.5], [1.5, 0.5], [0.5, 0.5]],
        ],
    }
    assert area_sqkm(clockwise) == pytest.approx(area_sqkm(counter_clockwise))
    assert area_sqkm(donut) == pytest.approx(area_sqkm(clockwise) * 0.75, rel=0.01)


def test_bounds_cover_every_part() -> None:
    geometry = {
        "type": "MultiPolygon",
        "coordinates": [
            [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
            [[[5, 5], [5, 6], [6, 6], [6, 5], [5, 5]]],
        ],
    }
    assert bounds(geometry) == (0.0, 0.0, 6.0, 6.0)
    assert bounds({"type": "Polygon", "coordinates": []}) is None
