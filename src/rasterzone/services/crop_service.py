# src/rasterzone/services/crop_service.py
from __future__ import annotations

"""
Cropper: sub-grilla mínima de un raster que cubre el bbox de una geometría.

El recorte es por bounding box: las celdas dentro del bbox pero fuera del
polígono conservan su valor. Para enmascarar exactamente usa exact=True
(o ZonalService.mask_raster sobre el resultado).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from ..config import Settings, get_settings
from ..contracts.core import EmptyPolicy, RunError, Stage
from ..contracts.errors import EmptyIntersection
from ..contracts.geo import Bounds, Raster, pretty_bounds, require_crs
from ..contracts.geometry import Geometry, geometry_bounds
from ..ports.transform import CoordinateTransformPort, transform_geometry
from .rasterize_service import RasterizeService
from .zonal_service import mask_raster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropBatchResult:
    rasters: Tuple[Optional[Raster], ...]   # None donde la geometría se saltó
    errors: Tuple[RunError, ...]


@dataclass
class CropService:
    rasterizer: RasterizeService = field(default_factory=RasterizeService)
    transformer: Optional[CoordinateTransformPort] = None
    settings: Settings = field(default_factory=get_settings)

    def geometry_bounds_in(self, raster: Raster, geometry: Geometry) -> Bounds:
        """Bbox de la geometría expresado en el CRS del raster."""
        g = transform_geometry(self.transformer, geometry, require_crs(raster.crs, "raster"))
        return geometry_bounds(g)

    def crop(self, raster: Raster, geometry: Geometry, *, exact: bool = False) -> Raster:
        g = transform_geometry(self.transformer, geometry, require_crs(raster.crs, "raster"))
        b = geometry_bounds(g)
        inter = b.intersection(raster.bounds)
        win = None if inter is None else raster.grid.window_for_bounds(inter)
        if win is None:
            raise EmptyIntersection(
                f"{pretty_bounds(b)} no solapa la extensión del raster {pretty_bounds(raster.bounds)}"
            )
        rows, cols = win
        out = raster.sub_raster(rows, cols)
        logger.debug("crop: filas %s, columnas %s", rows, cols)
        if exact:
            out = mask_raster(out, self.rasterizer.cover_cells(g, out))
        return out

    def crop_many(self, raster: Raster, geometries: Iterable[Geometry], *,
                  on_empty: Optional[EmptyPolicy] = None, exact: bool = False) -> CropBatchResult:
        """
        Recorta una geometría tras otra. Por defecto una geometría sin solape
        aborta con EmptyIntersection; con EmptyPolicy.SKIP se registra un
        RunError y su resultado es None.
        """
        policy = EmptyPolicy(on_empty or self.settings.empty_policy)
        rasters: List[Optional[Raster]] = []
        errors: List[RunError] = []
        for i, g in enumerate(geometries):
            try:
                rasters.append(self.crop(raster, g, exact=exact))
            except EmptyIntersection as e:
                if policy is EmptyPolicy.RAISE:
                    raise
                logger.warning("crop_many: geometría %d sin solape, se omite", i)
                rasters.append(None)
                errors.append(RunError.from_exception(Stage.CROP, e, index=i))
        logger.info("crop_many: %d recortes, %d omitidos", len(rasters) - len(errors), len(errors))
        return CropBatchResult(rasters=tuple(rasters), errors=tuple(errors))


__all__ = ["CropService", "CropBatchResult"]
