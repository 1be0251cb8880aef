"""Point-in-polygon checks and light metadata for GeoJSON boundaries.

Coordinates are GeoJSON ``[longitude, latitude]`` pairs. Containment uses ray
casting against the outer ring of each polygon only; interior rings (holes)
are not subtracted. Points lying exactly on an edge have no defined
membership.

Area, centroid and bounds come from shapely geometries; area is geodesic on
the WGS84 ellipsoid via pyproj.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.validation import make_valid

SUPPORTED_BOUNDARY_TYPES = ("Polygon", "MultiPolygon")

Position = Sequence[float]
Ring = Sequence[Position]

WGS84 = Geod(ellps="WGS84")


class GeometryError(ValueError):
    pass


def _polygons(geometry: dict[str, Any]) -> list[Sequence[Ring]]:
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if geom_type == "Polygon":
        return [coords]
    if geom_type == "MultiPolygon":
        return list(coords)
    return []


def _ring_contains(lng: float, lat: float, ring: Ring) -> bool:
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def contains(point: Position, geometry: dict[str, Any]) -> bool:
    lng, lat = float(point[0]), float(point[1])
    for polygon in _polygons(geometry):
        if not polygon:
            continue
        if _ring_contains(lng, lat, polygon[0]):
            return True
    return False


def vertex_count(geometry: dict[str, Any]) -> int:
    return sum(len(ring) for polygon in _polygons(geometry) for ring in polygon)


def _shape(geometry: dict[str, Any]) -> BaseGeometry | None:
    try:
        geom = shape(geometry)
    except (GEOSException, ValueError, TypeError, AttributeError):
        return None
    if geom.is_empty:
        return None
    return geom


def _polygon_parts(geom: BaseGeometry) -> list[Polygon]:
    if isinstance(geom, Polygon):
        return [geom]
    # make_valid may hand back a collection mixing polygons and slivers.
    parts: list[Polygon] = []
    for part in getattr(geom, "geoms", []):
        parts.extend(_polygon_parts(part))
    return parts


def area_sqkm(geometry: dict[str, Any]) -> float:
    geom = _shape(geometry)
    if geom is None:
        return 0.0
    if not geom.is_valid:
        geom = make_valid(geom)
    area_m2 = sum(abs(WGS84.geometry_area_perimeter(orient(part))[0]) for part in _polygon_parts(geom))
    return round(area_m2 / 1_000_000, 4)


def centroid(geometry: dict[str, Any]) -> list[float] | None:
    geom = _shape(geometry)
    if geom is None:
        return None
    point = geom.centroid
    return [point.x, point.y]


def bounds(geometry: dict[str, Any]) -> tuple[float, float, float, float] | None:
    """``(min_lng, min_lat, max_lng, max_lat)`` of the boundary, or ``None`` when empty."""
    geom = _shape(geometry)
    if geom is None:
        return None
    return geom.bounds


def _validate_ring(ring: Any) -> None:
    if not isinstance(ring, list) or not ring:
        raise GeometryError("each ring must be a non-empty list of positions")
    for position in ring:
        if (
            not isinstance(position, list | tuple)
            or len(position) < 2
            or not all(isinstance(value, int | float) and not isinstance(value, bool) for value in position[:2])
        ):
            raise GeometryError("positions must be [longitude, latitude] number pairs")


def validate_boundary_geojson(geojson: Any) -> None:
    if not isinstance(geojson, dict) or "type" not in geojson or "coordinates" not in geojson:
        raise GeometryError("Invalid GeoJSON format. Must include type and coordinates.")
    if geojson["type"] not in SUPPORTED_BOUNDARY_TYPES:
        raise GeometryError("Boundary type must be Polygon or MultiPolygon")
    coords = geojson["coordinates"]
    if not isinstance(coords, list) or not coords:
        raise GeometryError("coordinates must be a non-empty list")
    polygons = [coords] if geojson["type"] == "Polygon" else coords
    for polygon in polygons:
        if not isinstance(polygon, list) or not polygon:
            raise GeometryError("each polygon must be a non-empty list of rings")
        for ring in polygon:
            _validate_ring(ring)
    try:
        geom = shape(geojson)
    except (GEOSException, ValueError, TypeError) as exc:
        raise GeometryError(f"boundary rings cannot form a polygon: {exc}") from exc
    if geom.is_empty:
        raise GeometryError("boundary geometry is empty")
