# src/rasterzone/services/rasterize_service.py
from __future__ import annotations

"""
Rasterizer: geometría vectorial -> conjunto de celdas de una grilla.

Casos cubiertos:
  • Point: la celda que contiene el punto (vacío si cae fuera).
  • Point + radio: celdas cuyo centro está a distancia <= r (zona circular,
    distancia en unidades de mundo, válido con sx != |sy|).
  • Polygon (con huecos): centros dentro del anillo exterior y fuera de cada
    hueco; ray casting par-impar anillo por anillo. Un centro sobre un borde
    cuenta como dentro (frontera cerrada), también sobre el borde de un hueco.
  • LineString: recorrido de grilla (DDA) por segmento, grosor cero.
  • MultiPoint / MultiPolygon: unión de las máscaras de cada parte.

Trabaja solo sobre la ventana de celdas del bbox de la geometría
intersectado con la grilla, nunca sobre rows x cols completo.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..config import Settings, get_settings
from ..contracts.errors import GridMismatch
from ..contracts.geo import Bounds, CRSRef, GridGeometry, Raster, require_same_crs
from ..contracts.geometry import (
    Geometry, LineString, MultiPoint, MultiPolygon, Point, Polygon, Ring, geometry_bounds,
)

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]


# ----------------------
# CoverageMask
# ----------------------

@dataclass(frozen=True)
class CoverageMask:
    """
    Celdas (row, col) cubiertas, únicas y en orden row-major.
    `weights` (opcional) es la fracción cubierta en (0, 1] de cada celda.
    """
    rows: np.ndarray
    cols: np.ndarray
    shape: Tuple[int, int]
    weights: Optional[np.ndarray] = None

    def __post_init__(self):
        rows = np.asarray(self.rows, dtype=np.int64).ravel()
        cols = np.asarray(self.cols, dtype=np.int64).ravel()
        if rows.shape != cols.shape:
            raise ValueError("rows/cols con largos distintos")
        nr, nc = self.shape
        if rows.size and (rows.min() < 0 or rows.max() >= nr or cols.min() < 0 or cols.max() >= nc):
            raise GridMismatch(f"celdas fuera de la grilla {self.shape}")
        lin = rows * nc + cols
        w = None if self.weights is None else np.asarray(self.weights, dtype=np.float64).ravel()
        if w is not None and w.shape != lin.shape:
            raise ValueError("weights debe tener un valor por celda")
        order = np.argsort(lin, kind="stable")
        lin = lin[order]
        if w is not None:
            w = w[order]
        uniq, first = np.unique(lin, return_index=True)
        if w is not None:
            # duplicados: se queda la mayor cobertura
            w = np.maximum.reduceat(w, first) if w.size else w
            w.setflags(write=False)
        r, c = np.divmod(uniq, nc) if nc else (uniq, uniq)
        r.setflags(write=False); c.setflags(write=False)
        object.__setattr__(self, "rows", r)
        object.__setattr__(self, "cols", c)
        object.__setattr__(self, "weights", w)

    @staticmethod
    def empty(shape: Tuple[int, int]) -> "CoverageMask":
        return CoverageMask(np.empty(0, np.int64), np.empty(0, np.int64), shape)

    @staticmethod
    def from_window(hit: np.ndarray, rows: range, cols: range, shape: Tuple[int, int],
                    weights: Optional[np.ndarray] = None) -> "CoverageMask":
        rr, cc = np.nonzero(hit)
        w = None if weights is None else weights[rr, cc]
        return CoverageMask(rr + rows.start, cc + cols.start, shape, w)

    def __len__(self) -> int:
        return int(self.rows.size)

    def __iter__(self) -> Iterator[Cell]:
        return iter(zip(self.rows.tolist(), self.cols.tolist()))

    @property
    def is_weighted(self) -> bool:
        return self.weights is not None

    def cells(self) -> Set[Cell]:
        return set(self)

    def union(self, other: "CoverageMask") -> "CoverageMask":
        if self.shape != other.shape:
            raise GridMismatch(f"máscaras de grillas distintas: {self.shape} vs {other.shape}")
        if self.weights is None and other.weights is None:
            w = None
        else:
            w = np.concatenate([_ones_if_none(self), _ones_if_none(other)])
        return CoverageMask(np.concatenate([self.rows, other.rows]),
                            np.concatenate([self.cols, other.cols]), self.shape, w)

    def issubset(self, other: "CoverageMask") -> bool:
        return self.cells() <= other.cells()

    def to_array(self) -> np.ndarray:
        out = np.zeros(self.shape, dtype=bool)
        out[self.rows, self.cols] = True
        return out


def _ones_if_none(m: CoverageMask) -> np.ndarray:
    return np.ones(len(m), dtype=np.float64) if m.weights is None else m.weights


def _union_all(masks: Sequence[CoverageMask], shape: Tuple[int, int]) -> CoverageMask:
    out = CoverageMask.empty(shape)
    for m in masks:
        out = out.union(m)
    return out

# ----------------------
# Geometría de anillos (vectorizado sobre centros)
# ----------------------

def classify_ring(px: np.ndarray, py: np.ndarray, ring: Ring, tol: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Devuelve (inside, on_edge) para cada punto respecto de un anillo cerrado.
    inside: regla par-impar con rayo horizontal hacia +inf (indefinido sobre el borde).
    on_edge: distancia al borde <= tol.
    """
    inside = np.zeros(px.shape, dtype=bool)
    on_edge = np.zeros(px.shape, dtype=bool)
    for (x1, y1), (x2, y2) in zip(ring[:-1], ring[1:]):
        if y1 != y2:
            crosses = (y1 > py) != (y2 > py)
            xint = x1 + (py - y1) * (x2 - x1) / (y2 - y1)
            inside ^= crosses & (px < xint)
        dx, dy = x2 - x1, y2 - y1
        seg = math.hypot(dx, dy)
        near = ((px >= min(x1, x2) - tol) & (px <= max(x1, x2) + tol)
                & (py >= min(y1, y2) - tol) & (py <= max(y1, y2) + tol))
        if seg == 0.0:
            on_edge |= near
        else:
            on_edge |= near & (np.abs(dx * (py - y1) - dy * (px - x1)) <= tol * seg)
    return inside, on_edge


def points_in_polygon(px: np.ndarray, py: np.ndarray, poly: Polygon, tol: float) -> np.ndarray:
    inside, edge = classify_ring(px, py, poly.exterior, tol)
    hit = inside | edge
    for hole in poly.holes:
        if not hit.any():
            break
        h_in, h_edge = classify_ring(px, py, hole, tol)
        hit &= ~(h_in & ~h_edge)
    return hit

# ----------------------
# Núcleos por tipo
# ----------------------

def _edge_tol(grid: GridGeometry, edge_tolerance: float) -> float:
    return edge_tolerance * max(abs(grid.sx), abs(grid.sy))


def _polygon_cells(poly: Polygon, grid: GridGeometry, tol: float) -> CoverageMask:
    win = grid.window_for_bounds(geometry_bounds(poly))
    if win is None:
        return CoverageMask.empty(grid.shape)
    rows, cols = win
    X, Y = grid.cell_centers(rows, cols)
    hit = points_in_polygon(X, Y, poly, tol)
    logger.debug("polygon: ventana %dx%d, %d celdas", len(rows), len(cols), int(hit.sum()))
    return CoverageMask.from_window(hit, rows, cols, grid.shape)


def _point_cells(x: float, y: float, grid: GridGeometry) -> CoverageMask:
    r, c = grid.world_to_cell_unchecked(x, y)
    if not grid.contains_cell(r, c):
        return CoverageMask.empty(grid.shape)
    return CoverageMask(np.array([r]), np.array([c]), grid.shape)


def _buffer_bounds(x: float, y: float, radius: float) -> Bounds:
    return Bounds(x - radius, y - radius, x + radius, y + radius)


def _buffer_cells(x: float, y: float, radius: float, grid: GridGeometry) -> CoverageMask:
    win = grid.window_for_bounds(_buffer_bounds(x, y, radius))
    if win is None:
        return CoverageMask.empty(grid.shape)
    rows, cols = win
    X, Y = grid.cell_centers(rows, cols)
    hit = np.hypot(X - x, Y - y) <= radius
    return CoverageMask.from_window(hit, rows, cols, grid.shape)


def _clip_segment(r0: float, c0: float, r1: float, c1: float, nr: int, nc: int):
    """Liang-Barsky sobre [0, nr] x [0, nc] en espacio de celdas."""
    t0, t1 = 0.0, 1.0
    dr, dc = r1 - r0, c1 - c0
    for p, q in ((-dc, c0), (dc, nc - c0), (-dr, r0), (dr, nr - r0)):
        if p == 0:
            if q < 0:
                return None
            continue
        t = q / p
        if p < 0:
            if t > t1:
                return None
            t0 = max(t0, t)
        else:
            if t < t0:
                return None
            t1 = min(t1, t)
    return r0 + t0 * dr, c0 + t0 * dc, r0 + t1 * dr, c0 + t1 * dc


def traverse_segment(r0: float, c0: float, r1: float, c1: float) -> List[Cell]:
    """Celdas atravesadas por el segmento (DDA tipo Amanatides-Woo), en orden de recorrido."""
    ri, ci = int(math.floor(r0)), int(math.floor(c0))
    re_, ce = int(math.floor(r1)), int(math.floor(c1))
    dr, dc = r1 - r0, c1 - c0
    step_r = 1 if dr > 0 else -1
    step_c = 1 if dc > 0 else -1
    t_max_r = ((ri + (1 if dr > 0 else 0)) - r0) / dr if dr != 0 else math.inf
    t_max_c = ((ci + (1 if dc > 0 else 0)) - c0) / dc if dc != 0 else math.inf
    t_delta_r = abs(1.0 / dr) if dr != 0 else math.inf
    t_delta_c = abs(1.0 / dc) if dc != 0 else math.inf
    out = [(ri, ci)]
    for _ in range(abs(re_ - ri) + abs(ce - ci)):
        if t_max_c < t_max_r:
            ci += step_c
            t_max_c += t_delta_c
        else:
            ri += step_r
            t_max_r += t_delta_r
        out.append((ri, ci))
    return out


def _line_cells(line: LineString, grid: GridGeometry) -> CoverageMask:
    fr, fc = grid.world_to_cell_frac(
        np.array([p[0] for p in line.coords]), np.array([p[1] for p in line.coords])
    )
    cells: List[Cell] = []
    for i in range(len(line.coords) - 1):
        seg = _clip_segment(fr[i], fc[i], fr[i + 1], fc[i + 1], grid.rows, grid.cols)
        if seg is None:
            continue
        cells.extend(cell for cell in traverse_segment(*seg) if grid.contains_cell(*cell))
    if not cells:
        return CoverageMask.empty(grid.shape)
    rr, cc = zip(*cells)
    return CoverageMask(np.array(rr), np.array(cc), grid.shape)

# ----------------------
# API funcional
# ----------------------

def _check_radius(geometry: Geometry, radius: Optional[float]) -> None:
    if radius is None:
        return
    if not isinstance(geometry, (Point, MultiPoint)):
        raise TypeError(f"radius solo aplica a Point/MultiPoint, no a {type(geometry).__name__}")
    if radius < 0 or not math.isfinite(radius):
        raise ValueError(f"radius inválido: {radius}")


def cover_cells(geometry: Geometry, grid: GridGeometry, grid_crs: Optional[CRSRef], *,
                radius: Optional[float] = None, edge_tolerance: float = 1e-9) -> CoverageMask:
    """
    Celdas de `grid` cubiertas por `geometry`. Falla con CRSMismatch si el CRS
    de la geometría no es el del raster (el llamador debe reproyectar antes).
    """
    require_same_crs(geometry.crs, grid_crs, "geometría/raster")
    _check_radius(geometry, radius)
    tol = _edge_tol(grid, edge_tolerance)

    if isinstance(geometry, Point):
        if radius is None:
            return _point_cells(geometry.x, geometry.y, grid)
        return _buffer_cells(geometry.x, geometry.y, radius, grid)
    if isinstance(geometry, MultiPoint):
        if radius is None:
            parts = [_point_cells(x, y, grid) for x, y in geometry.points]
        else:
            parts = [_buffer_cells(x, y, radius, grid) for x, y in geometry.points]
        return _union_all(parts, grid.shape)
    if isinstance(geometry, Polygon):
        return _polygon_cells(geometry, grid, tol)
    if isinstance(geometry, MultiPolygon):
        return _union_all([_polygon_cells(p, grid, tol) for p in geometry.polygons], grid.shape)
    if isinstance(geometry, LineString):
        return _line_cells(geometry, grid)
    raise TypeError(f"Geometría no soportada: {type(geometry).__name__}")


def _subsample_hits(grid: GridGeometry, rows: range, cols: range, samples: int, member) -> np.ndarray:
    """Fracción de sub-puntos (samples x samples por celda) que cumplen `member(X, Y)`."""
    offs = (np.arange(samples, dtype=np.float64) + 0.5) / samples
    r_idx = (np.arange(rows.start, rows.stop, dtype=np.float64)[:, None] + offs[None, :]).ravel()
    c_idx = (np.arange(cols.start, cols.stop, dtype=np.float64)[:, None] + offs[None, :]).ravel()
    X, Y = np.meshgrid(grid.x0 + c_idx * grid.sx, grid.y0 + r_idx * grid.sy)
    hit = member(X, Y).reshape(len(rows), samples, len(cols), samples)
    return hit.mean(axis=(1, 3))


def coverage_fractions(geometry: Geometry, grid: GridGeometry, grid_crs: Optional[CRSRef], *,
                       samples: int = 4, radius: Optional[float] = None,
                       edge_tolerance: float = 1e-9) -> CoverageMask:
    """
    Máscara ponderada: peso = fracción de la celda cubierta, estimada con
    supermuestreo samples x samples. Point sin radio y LineString no tienen
    área: sus celdas pesan 1.
    """
    if samples < 1:
        raise ValueError("samples debe ser >= 1")
    require_same_crs(geometry.crs, grid_crs, "geometría/raster")
    _check_radius(geometry, radius)
    tol = _edge_tol(grid, edge_tolerance)

    if isinstance(geometry, (LineString, Point, MultiPoint)) and radius is None:
        m = cover_cells(geometry, grid, grid_crs, edge_tolerance=edge_tolerance)
        return CoverageMask(m.rows, m.cols, m.shape, np.ones(len(m)))

    if isinstance(geometry, (Point, MultiPoint)):
        centers = [geometry.xy] if isinstance(geometry, Point) else list(geometry.points)
        parts = []
        for x, y in centers:
            win = grid.window_for_bounds(_buffer_bounds(x, y, radius))  # type: ignore[arg-type]
            if win is None:
                continue
            frac = _subsample_hits(grid, win[0], win[1], samples,
                                   lambda X, Y: np.hypot(X - x, Y - y) <= radius)
            parts.append(CoverageMask.from_window(frac > 0, win[0], win[1], grid.shape, frac))
        return _union_all(parts, grid.shape)

    polys = [geometry] if isinstance(geometry, Polygon) else list(getattr(geometry, "polygons", ()))
    if not polys:
        raise TypeError(f"Geometría no soportada: {type(geometry).__name__}")
    parts = []
    for poly in polys:
        win = grid.window_for_bounds(geometry_bounds(poly))
        if win is None:
            continue
        frac = _subsample_hits(grid, win[0], win[1], samples,
                               lambda X, Y, p=poly: points_in_polygon(X, Y, p, tol))
        parts.append(CoverageMask.from_window(frac > 0, win[0], win[1], grid.shape, frac))
    return _union_all(parts, grid.shape)

# ----------------------
# Servicio
# ----------------------

@dataclass
class RasterizeService:
    settings: Settings = field(default_factory=get_settings)

    def cover_cells(self, geometry: Geometry, raster: Raster, *, radius: Optional[float] = None) -> CoverageMask:
        return cover_cells(geometry, raster.grid, raster.crs, radius=radius,
                           edge_tolerance=self.settings.edge_tolerance)

    def cover_buffer(self, point: Point, raster: Raster, radius: float) -> CoverageMask:
        return self.cover_cells(point, raster, radius=radius)

    def coverage_fractions(self, geometry: Geometry, raster: Raster, *,
                           radius: Optional[float] = None, samples: Optional[int] = None) -> CoverageMask:
        return coverage_fractions(geometry, raster.grid, raster.crs,
                                  samples=samples or self.settings.coverage_samples, radius=radius,
                                  edge_tolerance=self.settings.edge_tolerance)


__all__ = [
    "CoverageMask", "Cell", "RasterizeService", "cover_cells", "coverage_fractions",
    "classify_ring", "points_in_polygon", "traverse_segment",
]
