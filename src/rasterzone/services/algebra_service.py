# src/rasterzone/services/algebra_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

import numpy as np

from ..config import Settings, get_settings
from ..contracts.core import AlgebraOp
from ..contracts.geo import Raster, validate_grid_compat

logger = logging.getLogger(__name__)


@dataclass
class AlgebraService:
    """
    Aritmética celda a celda entre rasters alineados (puro, sin I/O).
    - No alinea: si grilla/CRS/bandas difieren falla (GridMismatch/CRSMismatch);
      alinear antes con ReprojectService.align_to.
    - Salida float64; NaN donde cualquiera de las entradas es nodata.
    """
    settings: Settings = field(default_factory=get_settings)

    def _operands(self, a: Raster, b: Raster):
        validate_grid_compat(a, b, tol=self.settings.grid_tolerance)
        x = a.data.astype(np.float64)
        y = b.data.astype(np.float64)
        valid = np.stack([a.valid_mask(i) & b.valid_mask(i) for i in range(a.count)], axis=0)
        return x, y, valid

    @staticmethod
    def _finish(ref: Raster, out: np.ndarray, valid: np.ndarray) -> Raster:
        out = np.where(valid & np.isfinite(out), out, np.nan)
        return Raster(out, ref.grid, ref.crs, nodata=None)

    def combine(self, a: Raster, b: Raster, op: Union[AlgebraOp, str]) -> Raster:
        op = AlgebraOp(op)
        x, y, valid = self._operands(a, b)
        with np.errstate(divide="ignore", invalid="ignore"):
            if op is AlgebraOp.ADD:
                out = x + y
            elif op is AlgebraOp.SUBTRACT:
                out = x - y
            elif op is AlgebraOp.MULTIPLY:
                out = x * y
            else:
                out = x / y
        logger.debug("combine %s: %d celdas válidas", op.value, int(valid.sum()))
        return self._finish(a, out, valid)

    def difference(self, a: Raster, b: Raster) -> Raster:
        return self.combine(a, b, AlgebraOp.SUBTRACT)

    def normalized_difference(self, a: Raster, b: Raster) -> Raster:
        x, y, valid = self._operands(a, b)
        with np.errstate(divide="ignore", invalid="ignore"):
            out = (x - y) / (x + y)
        return self._finish(a, out, valid)


__all__ = ["AlgebraService"]
