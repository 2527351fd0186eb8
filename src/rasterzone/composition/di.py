from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging
import yaml

from ..adapters.pyproj_transform import PyprojTransformer
from ..config import Settings
from ..ports.transform import CoordinateTransformPort
from ..services.algebra_service import AlgebraService
from ..services.crop_service import CropService
from ..services.rasterize_service import RasterizeService
from ..services.reproject_service import ReprojectService
from ..services.zonal_service import ZonalService

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_settings_from_yaml(path: Path) -> Settings:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: se esperaba un mapping YAML")
    return Settings(**data)


def build_settings(path: Union[str, Path]) -> Settings:
    cfg = Path(path).expanduser().resolve()
    return load_settings_from_yaml(cfg)


def configure_logging(level: str = "INFO") -> None:
    """Handler básico para el logger del paquete (nunca el root)."""
    log = logging.getLogger("rasterzone")
    log.setLevel(level)
    if not log.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(_LOG_FORMAT))
        log.addHandler(h)


@dataclass(frozen=True)
class Services:
    rasterizer: RasterizeService
    zonal: ZonalService
    cropper: CropService
    reprojector: ReprojectService
    algebra: AlgebraService


def build_services(settings: Settings, transformer: Optional[CoordinateTransformPort] = None) -> Services:
    configure_logging(settings.log_level)
    tr = transformer or PyprojTransformer()
    rasterizer = RasterizeService(settings=settings)
    return Services(
        rasterizer=rasterizer,
        zonal=ZonalService(rasterizer=rasterizer, transformer=tr, settings=settings),
        cropper=CropService(rasterizer=rasterizer, transformer=tr, settings=settings),
        reprojector=ReprojectService(transformer=tr, settings=settings),
        algebra=AlgebraService(settings=settings),
    )
