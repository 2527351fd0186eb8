# src/rasterzone/services/zonal_service.py
from __future__ import annotations

"""
Zonal Aggregator (contracts-first, sin I/O)

Funciones principales:
  • values(): valores válidos en celdas de la máscara, (band, value) en
    orden row-major -> columna -> banda.
  • reduce(): mean | sum | min | max | count | none por banda.
  • reduce_with_buffer(): una reducción por punto sobre su zona circular,
    conservando el orden de entrada.
  • zonal_stats(): resumen clásico (min, max, sum, mean, count, nodata_count)
    por geometría.
  • mask_raster(): anula (centinela nodata) las celdas fuera de la máscara.

Notas:
  - Las celdas nodata (centinela o NaN) no cuentan en ninguna reducción.
  - Una banda sin celdas que contribuyan reporta NODATA (count reporta 0).
  - Máscaras ponderadas: sum = Σ w·v, mean = Σ w·v / Σ w; min/max/count
    ignoran pesos.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import Settings, get_settings
from ..contracts.core import ReduceOp
from ..contracts.errors import GridMismatch, NODATA, _NoDataType
from ..contracts.geo import Raster, require_crs, valid_mask
from ..contracts.geometry import Geometry, Point
from ..ports.transform import CoordinateTransformPort, transform_geometry
from .rasterize_service import CoverageMask, RasterizeService

logger = logging.getLogger(__name__)

Scalar = Union[float, int, _NoDataType]
ReduceResult = Union[Tuple[Scalar, ...], List["BandValue"]]


# ----------------------
# DTOs
# ----------------------

class BandValue(NamedTuple):
    band: int
    value: float


@dataclass(frozen=True)
class ZonalSummary:
    min: Scalar
    max: Scalar
    sum: Scalar
    mean: Scalar
    count: int
    nodata_count: int


# ----------------------
# Utilidades internas
# ----------------------

def _check_mask(raster: Raster, mask: CoverageMask) -> None:
    if mask.shape != raster.grid.shape:
        raise GridMismatch(f"máscara {mask.shape} no corresponde a la grilla {raster.grid.shape}")


def _gather(raster: Raster, mask: CoverageMask, band: int) -> Tuple[np.ndarray, np.ndarray]:
    # validez sólo sobre las celdas de la máscara, nunca sobre la banda completa
    vals = raster.data[band, mask.rows, mask.cols]
    return vals, valid_mask(vals, raster.band_nodata(band))


def _reduce_band(vals: np.ndarray, valid: np.ndarray, weights: Optional[np.ndarray], op: ReduceOp) -> Scalar:
    n = int(valid.sum())
    if op is ReduceOp.COUNT:
        return n
    if n == 0:
        return NODATA
    v = vals[valid].astype(np.float64)
    if op is ReduceOp.MIN:
        return float(v.min())
    if op is ReduceOp.MAX:
        return float(v.max())
    w = np.ones_like(v) if weights is None else weights[valid]
    total = float(np.sum(v * w))
    if op is ReduceOp.SUM:
        return total
    if op is ReduceOp.MEAN:
        wsum = float(w.sum())
        return NODATA if wsum <= 0 else total / wsum
    raise ValueError(f"Operación no soportada: {op}")


def values(raster: Raster, mask: CoverageMask) -> List[BandValue]:
    _check_mask(raster, mask)
    vals = raster.data[:, mask.rows, mask.cols].T            # (celdas, bandas)
    valid = np.stack([valid_mask(vals[:, b], raster.band_nodata(b)) for b in range(raster.count)], axis=1)
    cell_idx, band_idx = np.nonzero(valid)                    # row-major: celda, luego banda
    return [BandValue(int(b), float(vals[i, b])) for i, b in zip(cell_idx.tolist(), band_idx.tolist())]


def reduce(raster: Raster, mask: CoverageMask, op: Union[ReduceOp, str]) -> ReduceResult:
    op = ReduceOp(op)
    if op is ReduceOp.NONE:
        return values(raster, mask)
    _check_mask(raster, mask)
    out = []
    for b in range(raster.count):
        vals, valid = _gather(raster, mask, b)
        out.append(_reduce_band(vals, valid, mask.weights, op))
    return tuple(out)


def summarize(raster: Raster, mask: CoverageMask, band: int = 0) -> ZonalSummary:
    _check_mask(raster, mask)
    vals, valid = _gather(raster, mask, band)
    w = mask.weights
    return ZonalSummary(
        min=_reduce_band(vals, valid, w, ReduceOp.MIN),
        max=_reduce_band(vals, valid, w, ReduceOp.MAX),
        sum=_reduce_band(vals, valid, w, ReduceOp.SUM),
        mean=_reduce_band(vals, valid, w, ReduceOp.MEAN),
        count=int(valid.sum()),
        nodata_count=int((~valid).sum()),
    )


def mask_raster(raster: Raster, mask: CoverageMask) -> Raster:
    """
    Raster nuevo con las celdas fuera de `mask` en nodata. Usa el centinela de
    cada banda; si no hay y el dtype es flotante usa NaN.
    """
    _check_mask(raster, mask)
    keep = mask.to_array()
    data = np.array(raster.data, copy=True)
    for b in range(raster.count):
        nd = raster.band_nodata(b)
        if nd is None:
            if data.dtype.kind != "f":
                raise ValueError(f"banda {b}: raster entero sin nodata, no se puede enmascarar")
            nd = np.nan
        data[b][~keep] = nd
    return raster.with_data(data)


# ----------------------
# Servicio
# ----------------------

@dataclass
class ZonalService:
    rasterizer: RasterizeService = field(default_factory=RasterizeService)
    transformer: Optional[CoordinateTransformPort] = None
    settings: Settings = field(default_factory=get_settings)

    # ------ Helpers ------
    def _in_raster_crs(self, geometry: Geometry, raster: Raster) -> Geometry:
        return transform_geometry(self.transformer, geometry, require_crs(raster.crs, "raster"))

    # ------ API pública ------
    def values(self, raster: Raster, mask: CoverageMask) -> List[BandValue]:
        return values(raster, mask)

    def reduce(self, raster: Raster, mask: CoverageMask, op: Union[ReduceOp, str] = ReduceOp.MEAN) -> ReduceResult:
        return reduce(raster, mask, op)

    def reduce_geometry(self, raster: Raster, geometry: Geometry, op: Union[ReduceOp, str] = ReduceOp.MEAN,
                        *, weighted: bool = False) -> ReduceResult:
        g = self._in_raster_crs(geometry, raster)
        mask = self.rasterizer.coverage_fractions(g, raster) if weighted else self.rasterizer.cover_cells(g, raster)
        return reduce(raster, mask, op)

    def reduce_with_buffer(self, raster: Raster, points: Sequence[Point], radius: float,
                           op: Union[ReduceOp, str] = ReduceOp.MEAN) -> List[ReduceResult]:
        """
        Una reducción por punto (mismo orden de entrada). Un buffer sin celdas
        dentro de la grilla da NODATA en todas las bandas (lista vacía con op=none).
        """
        op = ReduceOp(op)

        def _one(pt: Point) -> ReduceResult:
            g = self._in_raster_crs(pt, raster)
            mask = self.rasterizer.cover_buffer(g, raster, radius)  # type: ignore[arg-type]
            if len(mask) == 0:
                return [] if op is ReduceOp.NONE else (NODATA,) * raster.count
            return reduce(raster, mask, op)

        pts = list(points)
        workers = min(self.settings.max_workers, max(len(pts), 1))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                out = list(pool.map(_one, pts))
        else:
            out = [_one(p) for p in pts]
        logger.info("reduce_with_buffer: %d puntos, r=%s, op=%s", len(pts), radius, op.value)
        return out

    def zonal_stats(self, raster: Raster, geometries: Iterable[Geometry], *, band: int = 0,
                    weighted: bool = False) -> List[ZonalSummary]:
        out: List[ZonalSummary] = []
        for g in geometries:
            g2 = self._in_raster_crs(g, raster)
            mask = self.rasterizer.coverage_fractions(g2, raster) if weighted else self.rasterizer.cover_cells(g2, raster)
            out.append(summarize(raster, mask, band))
        logger.info("zonal_stats: %d geometrías", len(out))
        return out

    def mask_raster(self, raster: Raster, geometry: Geometry) -> Raster:
        g = self._in_raster_crs(geometry, raster)
        return mask_raster(raster, self.rasterizer.cover_cells(g, raster))


__all__ = [
    "ZonalService", "BandValue", "ZonalSummary", "values", "reduce", "summarize", "mask_raster",
]
