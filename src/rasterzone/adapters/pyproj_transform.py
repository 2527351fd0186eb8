# src/rasterzone/adapters/pyproj_transform.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np
from pyproj import CRS, Transformer

from ..contracts.geo import CRSRef, require_crs
from ..ports.transform import CoordinateTransformPort

logger = logging.getLogger(__name__)


def crsref_to_pyproj(ref: CRSRef) -> CRS:
    """CRSRef → pyproj.CRS (EPSG si está, si no WKT)."""
    require_crs(ref, "CRSRef")
    if ref.epsg is not None:
        return CRS.from_epsg(int(ref.epsg))
    return CRS.from_user_input(ref.wkt)


@dataclass
class PyprojTransformer(CoordinateTransformPort):
    """
    Adapter del puerto de transformación usando pyproj.
    Cachea un Transformer por par (src, dst) y por hilo (pyproj.Transformer
    no se comparte entre hilos); siempre en orden (x, y).
    """
    _local: threading.local = field(default_factory=threading.local, repr=False, compare=False)

    def _get(self, src: CRSRef, dst: CRSRef) -> Transformer:
        cache: Dict[Tuple[str, str], Transformer] = self._local.__dict__.setdefault("cache", {})
        key = (src.to_wkt(), dst.to_wkt())
        tr = cache.get(key)
        if tr is None:
            logger.debug("Creando Transformer %s -> %s", key[0][:40], key[1][:40])
            tr = Transformer.from_crs(crsref_to_pyproj(src), crsref_to_pyproj(dst), always_xy=True)
            cache[key] = tr
        return tr

    # --- CoordinateTransformPort ---
    def transform(self, xs: np.ndarray, ys: np.ndarray, src: CRSRef, dst: CRSRef) -> Tuple[np.ndarray, np.ndarray]:
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        if self.crs_equals(src, dst):
            return xs.copy(), ys.copy()
        tx, ty = self._get(src, dst).transform(xs, ys)
        return np.asarray(tx, dtype=np.float64), np.asarray(ty, dtype=np.float64)

    def crs_equals(self, a: CRSRef, b: CRSRef) -> bool:
        if a.equals(b):
            return True
        # EPSG vs WKT del mismo sistema: delega en pyproj
        return crsref_to_pyproj(a) == crsref_to_pyproj(b)

__all__ = ["PyprojTransformer", "crsref_to_pyproj"]
