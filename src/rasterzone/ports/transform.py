# src/rasterzone/ports/transform.py
from __future__ import annotations

from typing import Optional, Protocol, Tuple, runtime_checkable

import numpy as np

from ..contracts.errors import CRSMismatch
from ..contracts.geo import CRSRef, require_crs
from ..contracts.geometry import Geometry, map_coords

@runtime_checkable
class CoordinateTransformPort(Protocol):
    """
    Transformación de coordenadas entre CRS (capacidad externa).
    Reglas:
      - transform() es vectorizado: arrays 1D de igual largo, orden (x, y).
      - crs_equals() decide si dos CRS son intercambiables; nunca por rangos de coordenadas.
    """
    def transform(self, xs: np.ndarray, ys: np.ndarray, src: CRSRef, dst: CRSRef) -> Tuple[np.ndarray, np.ndarray]: ...
    def crs_equals(self, a: CRSRef, b: CRSRef) -> bool: ...


def transform_point(port: CoordinateTransformPort, x: float, y: float, src: CRSRef, dst: CRSRef) -> Tuple[float, float]:
    tx, ty = port.transform(np.array([x], dtype=np.float64), np.array([y], dtype=np.float64), src, dst)
    return float(np.asarray(tx)[0]), float(np.asarray(ty)[0])


def transform_geometry(port: Optional[CoordinateTransformPort], g: Geometry, dst: Optional[CRSRef]) -> Geometry:
    """
    Lleva `g` al CRS `dst`. Sin cambio si los CRS son iguales (CRSRef.equals).
    Sin puerto configurado y CRS distintos -> CRSMismatch (nunca se asume igualdad).
    """
    src = require_crs(g.crs, "geometría")
    dst = require_crs(dst, "CRS destino")
    if src.equals(dst):
        return g
    if port is None:
        raise CRSMismatch(
            f"La geometría está en {src.to_wkt()} y el destino en {dst.to_wkt()}; "
            "no hay CoordinateTransformPort configurado"
        )
    return map_coords(g, lambda xs, ys: port.transform(xs, ys, src, dst), dst)

__all__ = ["CoordinateTransformPort", "transform_point", "transform_geometry"]
