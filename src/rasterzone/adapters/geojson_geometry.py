# src/rasterzone/adapters/geojson_geometry.py
from __future__ import annotations

"""
GeoJSON (mapping ya parseado) <-> geometrías del dominio.

Acepta Geometry, Feature o FeatureCollection. GeoJSON no trae CRS propio:
el llamador indica en qué CRS están las coordenadas.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..contracts.geo import CRSRef
from ..contracts.geometry import (
    Geometry, LineString, MultiPoint, MultiPolygon, Point, Polygon, Ring,
)


def _geometry_part(obj: Mapping) -> Mapping:
    # Acepta Feature/Geometry, devuelve Geometry
    t = obj.get("type")
    if t == "Feature":
        g = obj.get("geometry")
        if g is None:
            raise ValueError("Feature sin geometría")
        return g
    if "coordinates" in obj:
        return obj
    raise ValueError(f"Formato GeoJSON no reconocido: type={t!r}")


def _polygon(rings: List[Any], crs: Optional[CRSRef]) -> Polygon:
    if not rings:
        raise ValueError("Polygon sin anillos")
    return Polygon(tuple(map(tuple, rings[0])), tuple(tuple(map(tuple, h)) for h in rings[1:]), crs=crs)


def geometry_from_mapping(obj: Mapping, crs: Optional[CRSRef]) -> Geometry:
    g = _geometry_part(obj)
    t = g.get("type")
    coords = g["coordinates"]
    if t == "Point":
        return Point(float(coords[0]), float(coords[1]), crs=crs)
    if t == "MultiPoint":
        return MultiPoint(tuple(map(tuple, coords)), crs=crs)
    if t == "LineString":
        return LineString(tuple(map(tuple, coords)), crs=crs)
    if t == "Polygon":
        return _polygon(coords, crs)
    if t == "MultiPolygon":
        return MultiPolygon(tuple(_polygon(p, crs) for p in coords), crs=crs)
    raise ValueError(f"Tipo de geometría GeoJSON no soportado: {t!r}")


def geometries_from_geojson(obj: Mapping, crs: Optional[CRSRef]) -> Tuple[Geometry, ...]:
    """Todas las geometrías (una por Feature en una FeatureCollection)."""
    if obj.get("type") == "FeatureCollection":
        feats = obj.get("features", [])
        if not feats:
            raise ValueError("GeoJSON vacío")
        return tuple(geometry_from_mapping(f, crs) for f in feats)
    return (geometry_from_mapping(obj, crs),)


def geometry_from_geojson(obj: Mapping, crs: Optional[CRSRef]) -> Geometry:
    """Primera geometría del documento (ROI típico)."""
    return geometries_from_geojson(obj, crs)[0]


def _ring_coords(ring: Ring) -> List[List[float]]:
    return [[x, y] for x, y in ring]


def geometry_to_geojson(g: Geometry) -> Dict[str, Any]:
    if isinstance(g, Point):
        return {"type": "Point", "coordinates": [g.x, g.y]}
    if isinstance(g, MultiPoint):
        return {"type": "MultiPoint", "coordinates": [[x, y] for x, y in g.points]}
    if isinstance(g, LineString):
        return {"type": "LineString", "coordinates": [[x, y] for x, y in g.coords]}
    if isinstance(g, Polygon):
        return {"type": "Polygon", "coordinates": [_ring_coords(r) for r in g.rings]}
    if isinstance(g, MultiPolygon):
        return {"type": "MultiPolygon",
                "coordinates": [[_ring_coords(r) for r in p.rings] for p in g.polygons]}
    raise TypeError(f"Geometría no soportada: {type(g).__name__}")


__all__ = [
    "geometry_from_mapping", "geometry_from_geojson", "geometries_from_geojson", "geometry_to_geojson",
]
