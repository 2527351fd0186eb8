# src/rasterzone/services/reproject_service.py
from __future__ import annotations

"""
Reprojector: remuestrea un raster fuente sobre una grilla/CRS destino existente.

Para cada centro de celda destino:
  1. centro en mundo vía target_grid.cell_to_world
  2. transformación target_crs -> CRS fuente (CoordinateTransformPort)
  3. muestreo de la fuente:
       nearest  -> celda de centro más cercano (empates: fila menor, luego columna menor)
       bilinear -> 4 vecinos; cualquier vecino nodata deja la salida en nodata

La resolución de salida es siempre la de la grilla destino.
Mismo CRS en fuente y destino = remuestreo puro (sin transformación).
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import Settings, get_settings
from ..contracts.core import Resampling
from ..contracts.errors import CRSMismatch, EmptyIntersection
from ..contracts.geo import CRSRef, GridGeometry, Raster, require_crs
from ..ports.transform import CoordinateTransformPort

logger = logging.getLogger(__name__)

_UNSET = object()


# ----------------------
# Núcleos de muestreo
# ----------------------

def nearest_index(frac: np.ndarray, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Índice de la celda de centro más cercano a la coordenada fraccionaria `frac`
    (centros en k + 0.5). Empates hacia el índice menor. Devuelve (idx, inside).
    """
    inside = (frac >= 0) & (frac < n)
    safe = np.where(inside, frac, 0.0)
    idx = np.ceil(safe - 1.0).astype(np.int64)
    return np.clip(idx, 0, max(n - 1, 0)), inside


def _bilinear_setup(frac: np.ndarray, n: int):
    pos = np.where(np.isfinite(frac), frac, 0.0) - 0.5
    i0 = np.floor(pos).astype(np.int64)
    w = pos - i0
    return np.clip(i0, 0, n - 1), np.clip(i0 + 1, 0, n - 1), w


def _sample_nearest(src: Raster, valid: Sequence[np.ndarray], fr: np.ndarray, fc: np.ndarray,
                    out: np.ndarray, fills) -> np.ndarray:
    ri, in_r = nearest_index(fr, src.grid.rows)
    ci, in_c = nearest_index(fc, src.grid.cols)
    inside = in_r & in_c
    for b in range(src.count):
        vals = src.data[b][ri, ci]
        ok = inside & valid[b][ri, ci]
        band = np.full(fr.shape, fills[b], dtype=out.dtype)
        band[ok] = vals[ok]
        out[b] = band
    return inside


def _sample_bilinear(src: Raster, valid: Sequence[np.ndarray], fr: np.ndarray, fc: np.ndarray,
                     out: np.ndarray, fills) -> np.ndarray:
    _, in_r = nearest_index(fr, src.grid.rows)
    _, in_c = nearest_index(fc, src.grid.cols)
    inside = in_r & in_c
    r0, r1, wr = _bilinear_setup(fr, src.grid.rows)
    c0, c1, wc = _bilinear_setup(fc, src.grid.cols)
    for b in range(src.count):
        data, vb = src.data[b], valid[b]
        ok = inside & vb[r0, c0] & vb[r0, c1] & vb[r1, c0] & vb[r1, c1]
        # sólo las esquinas muestreadas pasan a float64
        q00, q01 = data[r0, c0].astype(np.float64), data[r0, c1].astype(np.float64)
        q10, q11 = data[r1, c0].astype(np.float64), data[r1, c1].astype(np.float64)
        with np.errstate(invalid="ignore"):
            v = (1 - wr) * (1 - wc) * q00 + (1 - wr) * wc * q01 + wr * (1 - wc) * q10 + wr * wc * q11
        band = np.full(fr.shape, fills[b], dtype=out.dtype)
        band[ok] = v[ok]
        out[b] = band
    return inside


def _fits(value: float, dtype: np.dtype) -> bool:
    """True si `value` se guarda exacto en `dtype` (NaN sólo cabe en flotantes)."""
    if dtype.kind == "f":
        return True
    if math.isnan(value) or dtype.kind not in "iu":
        return False
    info = np.iinfo(dtype)
    return float(value).is_integer() and info.min <= value <= info.max


def _output_layout(src: Raster, resampling: Resampling, nodata) -> Tuple[np.dtype, List[float], Tuple]:
    """
    dtype de salida, relleno por banda y nodata declarado por banda.
    Se promueve a float64 si algún nodata falta o no cabe exacto en el dtype
    de la fuente (p.ej. NaN o -9999.5 sobre int16).
    """
    dtype = np.dtype(np.float64) if resampling is Resampling.BILINEAR else src.data.dtype
    if nodata is not _UNSET:
        declared = (None if nodata is None else float(nodata),) * src.count
    else:
        declared = tuple(src.nodata)  # type: ignore[arg-type]
    if any(v is None or not _fits(v, dtype) for v in declared):
        dtype = np.dtype(np.float64)
    fills = [np.nan if v is None else v for v in declared]
    return dtype, fills, declared


# ----------------------
# Servicio
# ----------------------

@dataclass
class ReprojectService:
    transformer: Optional[CoordinateTransformPort] = None
    settings: Settings = field(default_factory=get_settings)

    def reproject(self, source: Raster, target_grid: GridGeometry, target_crs: Optional[CRSRef],
                  resampling: Optional[Union[Resampling, str]] = None, *, nodata=_UNSET) -> Raster:
        src_crs = require_crs(source.crs, "raster fuente")
        dst_crs = require_crs(target_crs, "CRS destino")
        method = Resampling(resampling or self.settings.default_resampling)
        same = src_crs.equals(dst_crs)
        if not same and self.transformer is None:
            raise CRSMismatch(
                f"Reproyección {dst_crs.to_wkt()} -> {src_crs.to_wkt()} sin CoordinateTransformPort configurado"
            )

        dtype, fills, declared = _output_layout(source, method, nodata)
        out = np.empty((source.count, target_grid.rows, target_grid.cols), dtype=dtype)
        sample = _sample_bilinear if method is Resampling.BILINEAR else _sample_nearest
        # una máscara de validez por banda y llamada, compartida por todos los bloques
        valid = [source.valid_mask(b) for b in range(source.count)]
        tr = None if same else self.transformer
        step = self.settings.reproject_chunk_rows
        chunks = [range(r, min(r + step, target_grid.rows)) for r in range(0, target_grid.rows, step)]

        def _chunk(rows: range) -> int:
            X, Y = target_grid.cell_centers(rows, range(0, target_grid.cols))
            if tr is not None:
                tx, ty = tr.transform(X.ravel(), Y.ravel(), dst_crs, src_crs)
                X = np.asarray(tx, dtype=np.float64).reshape(X.shape)
                Y = np.asarray(ty, dtype=np.float64).reshape(Y.shape)
            fr, fc = source.grid.world_to_cell_frac(X, Y)
            block = np.empty((source.count, len(rows), target_grid.cols), dtype=dtype)
            inside = sample(source, valid, np.atleast_2d(fr), np.atleast_2d(fc), block, fills)
            out[:, rows.start:rows.stop, :] = block
            return int(inside.sum())

        workers = min(self.settings.max_workers, max(len(chunks), 1))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                hits = sum(pool.map(_chunk, chunks))
        else:
            hits = sum(_chunk(rg) for rg in chunks)

        if hits == 0:
            raise EmptyIntersection("La grilla destino no solapa el raster fuente")
        logger.debug("reproject: %s, %d/%d celdas con fuente", method.value, hits, target_grid.rows * target_grid.cols)
        return Raster(out, target_grid, dst_crs, declared)

    def align_to(self, source: Raster, reference: Raster,
                 resampling: Optional[Union[Resampling, str]] = None) -> Raster:
        """Reproyecta `source` sobre la grilla y el CRS de `reference`."""
        return self.reproject(source, reference.grid, reference.crs, resampling)


__all__ = ["ReprojectService", "nearest_index"]
