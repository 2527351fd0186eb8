# src/rasterzone/contracts/errors.py
from __future__ import annotations

"""
Errores tipados del núcleo raster/vector.

Todos heredan de ValueError: quien ya captura ValueError sigue funcionando.
Ninguno es fatal; el llamador decide (p.ej. saltar una geometría que no recorta).
"""


class RasterzoneError(ValueError):
    """Base de los errores del núcleo."""


class CRSMismatch(RasterzoneError):
    """CRS de geometría/raster no coinciden y no se aplicó transformación."""


class CRSUndefined(RasterzoneError):
    """Falta CRS donde es obligatorio."""


class OutOfBounds(RasterzoneError):
    """Búsqueda de celda con chequeo de límites fuera de la grilla."""


class InvalidRange(RasterzoneError):
    """Sub-grilla pedida con rango vacío o fuera de límites."""


class EmptyIntersection(RasterzoneError):
    """El objetivo (recorte/reproyección) no solapa la fuente."""


class GridMismatch(RasterzoneError):
    """Rasters no alineados (forma, geotransform o número de bandas)."""


class _NoDataType:
    """
    Resultado válido (no error): "no hubo celdas/valores que contribuyan".
    Singleton falsy; se compara por identidad (`x is NODATA`).
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NoData"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_NoDataType, ())


NODATA = _NoDataType()


def is_nodata(value: object) -> bool:
    return value is NODATA


__all__ = [
    "RasterzoneError", "CRSMismatch", "CRSUndefined", "OutOfBounds",
    "InvalidRange", "EmptyIntersection", "GridMismatch", "NODATA", "is_nodata",
]
