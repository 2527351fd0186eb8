# src/rasterzone/contracts/geometry.py
from __future__ import annotations

"""
Geometrías vectoriales como variantes etiquetadas (sin shapely/OGR).

Cada variante lleva sus propios campos obligatorios y su CRS:
  Point | MultiPoint | LineString | Polygon | MultiPolygon

Los anillos de Polygon se guardan siempre cerrados (último vértice == primero).
Los huecos (holes) son anillos interiores; la orientación no se valida,
el Rasterizer clasifica anillo por anillo.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional, Sequence, Tuple, Union

import numpy as np

from .geo import Bounds, CRSRef, bounds_of_points

XY = Tuple[float, float]
Ring = Tuple[XY, ...]
CoordFn = Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]


def _xy(p: Sequence[float]) -> XY:
    if len(p) < 2:
        raise ValueError(f"coordenada inválida: {p!r}")
    return (float(p[0]), float(p[1]))


def _ring(coords: Iterable[Sequence[float]]) -> Ring:
    pts = [_xy(p) for p in coords]
    if len(pts) >= 2 and pts[0] == pts[-1]:
        pts = pts[:-1]
    if len(set(pts)) < 3:
        raise ValueError("un anillo necesita al menos 3 vértices distintos")
    pts.append(pts[0])
    return tuple(pts)


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    crs: Optional[CRSRef] = None

    @property
    def xy(self) -> XY:
        return (self.x, self.y)


@dataclass(frozen=True)
class MultiPoint:
    points: Tuple[XY, ...]
    crs: Optional[CRSRef] = None

    def __post_init__(self):
        pts = tuple(_xy(p) for p in self.points)
        if not pts:
            raise ValueError("MultiPoint vacío")
        object.__setattr__(self, "points", pts)


@dataclass(frozen=True)
class LineString:
    coords: Tuple[XY, ...]
    crs: Optional[CRSRef] = None

    def __post_init__(self):
        pts = tuple(_xy(p) for p in self.coords)
        if len(pts) < 2:
            raise ValueError("LineString necesita al menos 2 vértices")
        object.__setattr__(self, "coords", pts)


@dataclass(frozen=True)
class Polygon:
    exterior: Ring
    holes: Tuple[Ring, ...] = field(default_factory=tuple)
    crs: Optional[CRSRef] = None

    def __post_init__(self):
        object.__setattr__(self, "exterior", _ring(self.exterior))
        object.__setattr__(self, "holes", tuple(_ring(h) for h in self.holes))

    @property
    def rings(self) -> Tuple[Ring, ...]:
        return (self.exterior,) + self.holes

    @staticmethod
    def from_bounds(b: Bounds, crs: Optional[CRSRef] = None) -> "Polygon":
        return Polygon(((b.minx, b.miny), (b.maxx, b.miny), (b.maxx, b.maxy), (b.minx, b.maxy)), crs=crs)


@dataclass(frozen=True)
class MultiPolygon:
    polygons: Tuple[Polygon, ...]
    crs: Optional[CRSRef] = None

    def __post_init__(self):
        polys = tuple(self.polygons)
        if not polys:
            raise ValueError("MultiPolygon vacío")
        # las partes heredan el CRS del contenedor
        polys = tuple(Polygon(p.exterior, p.holes, crs=self.crs) for p in polys)
        object.__setattr__(self, "polygons", polys)


Geometry = Union[Point, MultiPoint, LineString, Polygon, MultiPolygon]
GEOMETRY_TYPES = (Point, MultiPoint, LineString, Polygon, MultiPolygon)


def iter_vertices(g: Geometry) -> Iterator[XY]:
    if isinstance(g, Point):
        yield g.xy
    elif isinstance(g, MultiPoint):
        yield from g.points
    elif isinstance(g, LineString):
        yield from g.coords
    elif isinstance(g, Polygon):
        for ring in g.rings:
            yield from ring
    elif isinstance(g, MultiPolygon):
        for p in g.polygons:
            yield from iter_vertices(p)
    else:
        raise TypeError(f"Geometría no soportada: {type(g).__name__}")


def geometry_bounds(g: Geometry) -> Bounds:
    pts = list(iter_vertices(g))
    return bounds_of_points([p[0] for p in pts], [p[1] for p in pts])


def _apply(fn: CoordFn, pts: Sequence[XY]) -> Tuple[XY, ...]:
    xs = np.array([p[0] for p in pts], dtype=np.float64)
    ys = np.array([p[1] for p in pts], dtype=np.float64)
    tx, ty = fn(xs, ys)
    return tuple(zip(np.asarray(tx, dtype=np.float64).tolist(), np.asarray(ty, dtype=np.float64).tolist()))


def map_coords(g: Geometry, fn: CoordFn, crs: Optional[CRSRef]) -> Geometry:
    """
    Aplica `fn(xs, ys) -> (xs, ys)` a todos los vértices y devuelve una
    geometría nueva del mismo tipo con el CRS indicado.
    """
    if isinstance(g, Point):
        ((x, y),) = _apply(fn, [g.xy])
        return Point(x, y, crs=crs)
    if isinstance(g, MultiPoint):
        return MultiPoint(_apply(fn, g.points), crs=crs)
    if isinstance(g, LineString):
        return LineString(_apply(fn, g.coords), crs=crs)
    if isinstance(g, Polygon):
        return Polygon(_apply(fn, g.exterior), tuple(_apply(fn, h) for h in g.holes), crs=crs)
    if isinstance(g, MultiPolygon):
        return MultiPolygon(tuple(map_coords(p, fn, crs) for p in g.polygons), crs=crs)  # type: ignore[misc]
    raise TypeError(f"Geometría no soportada: {type(g).__name__}")


def with_crs(g: Geometry, crs: Optional[CRSRef]) -> Geometry:
    return map_coords(g, lambda xs, ys: (xs, ys), crs)


__all__ = [
    "XY", "Ring", "Point", "MultiPoint", "LineString", "Polygon", "MultiPolygon",
    "Geometry", "GEOMETRY_TYPES", "iter_vertices", "geometry_bounds", "map_coords", "with_crs",
]
