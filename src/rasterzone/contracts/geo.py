# src/rasterzone/contracts/geo.py

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

from .errors import CRSMismatch, CRSUndefined, GridMismatch, InvalidRange, OutOfBounds

GeoTransform = Tuple[float, float, float, float, float, float]
NoDataValue = Optional[float]

class Bounds(NamedTuple):
    minx: float; miny: float; maxx: float; maxy: float

    def intersects(self, other: "Bounds") -> bool:
        """Solape con área o contacto (bordes incluidos)."""
        return not (self.minx > other.maxx or self.maxx < other.minx
                    or self.miny > other.maxy or self.maxy < other.miny)

    def intersection(self, other: "Bounds") -> Optional["Bounds"]:
        if not self.intersects(other):
            return None
        return Bounds(max(self.minx, other.minx), max(self.miny, other.miny),
                      min(self.maxx, other.maxx), min(self.maxy, other.maxy))

# ---------- CRS (puro dominio, sin GDAL) ----------
@dataclass(frozen=True)
class CRSRef:
    wkt: Optional[str] = None
    epsg: Optional[int] = None

    @staticmethod
    def from_epsg(code: int) -> "CRSRef":
        return CRSRef(epsg=int(code))

    @staticmethod
    def from_wkt(wkt: str) -> "CRSRef":
        return CRSRef(wkt=wkt)

    @staticmethod
    def parse(value: Union["CRSRef", str, int]) -> "CRSRef":
        """
        Acepta CRSRef, entero EPSG, 'EPSG:<code>' o WKT.
        """
        if isinstance(value, CRSRef):
            return value
        if isinstance(value, int):
            return CRSRef.from_epsg(value)
        s = str(value).strip()
        if not s:
            raise ValueError("CRS vacío")
        if s.upper().startswith("EPSG:"):
            return CRSRef.from_epsg(int(s.split(":", 1)[1]))
        return CRSRef.from_wkt(s)

    @property
    def is_empty(self) -> bool:
        return not self.wkt and self.epsg is None

    def to_wkt(self) -> str:
        """
        Devuelve una representación de texto del CRS.
        - Si hay WKT, retorna el WKT tal cual.
        - Si no hay WKT pero sí EPSG, retorna 'EPSG:<code>' como representación textual.
        - Si no hay nada, error.
        """
        if self.wkt:
            return self.wkt
        if self.epsg is not None:
            return f"EPSG:{int(self.epsg)}"
        raise CRSUndefined("CRSRef vacío: no hay WKT ni EPSG.")

    @staticmethod
    def _normalize_wkt(wkt: str) -> str:
        """
        Normalización determinista para comparación:
        - strip, upper, colapsar espacios internos
        - eliminar espacios alrededor de comas y corchetes
        No intenta parsear ni reordenar nodos.
        """
        s = " ".join(wkt.strip().upper().split())
        s = s.replace(" ,", ",").replace(", ", ",")
        s = s.replace("[ ", "[").replace(" ]", "]")
        return s

    def equals(self, other: Optional["CRSRef"]) -> bool:
        """
        Comparación determinista sin GDAL:
        1) Si ambos tienen EPSG -> compara enteros.
        2) En caso contrario, si ambos tienen WKT -> compara WKT normalizado.
        3) Cualquier mezcla (uno EPSG y otro WKT) -> False.
        Nunca se infiere igualdad a partir de rangos de coordenadas.
        """
        if other is None:
            return False
        if self is other:
            return True
        if self.epsg is not None and other.epsg is not None:
            return int(self.epsg) == int(other.epsg)
        if self.wkt and other.wkt:
            return self._normalize_wkt(self.wkt) == self._normalize_wkt(other.wkt)
        return False


def require_crs(crs: Optional[CRSRef], what: str) -> CRSRef:
    if crs is None or crs.is_empty:
        raise CRSUndefined(f"{what} no tiene CRS asociado")
    return crs


def require_same_crs(a: Optional[CRSRef], b: Optional[CRSRef], what: str = "geometría/raster") -> None:
    a = require_crs(a, what)
    b = require_crs(b, what)
    if not a.equals(b):
        raise CRSMismatch(f"CRS no coincide ({what}): {a.to_wkt()} vs {b.to_wkt()}")

# ---------- Grilla (transformación afín pixel <-> mundo) ----------
@dataclass(frozen=True)
class GridGeometry:
    """
    Mapeo afín entre (row, col) y (x, y).

    Convención: x = x0 + col*sx ; y = y0 + row*sy (esquina de celda).
    Con sy < 0 (imágenes north-up) (x0, y0) es la esquina superior izquierda
    y la fila 0 es la de arriba; con sy > 0 la fila 0 es la más baja.
    """
    x0: float
    y0: float
    sx: float
    sy: float
    rows: int
    cols: int

    def __post_init__(self):
        if not self.sx > 0:
            raise ValueError(f"sx debe ser > 0 (sx={self.sx})")
        if self.sy == 0:
            raise ValueError("sy no puede ser 0")
        if self.rows < 0 or self.cols < 0:
            raise ValueError(f"Dimensiones inválidas: rows={self.rows}, cols={self.cols}")

    # --- constructores ---
    @staticmethod
    def from_geotransform(gt: GeoTransform, rows: int, cols: int) -> "GridGeometry":
        x0, px, rx, y0, ry, py = gt
        if rx != 0 or ry != 0:
            raise ValueError("GeoTransform con rotación no soportado")
        return GridGeometry(float(x0), float(y0), float(px), float(py), int(rows), int(cols))

    @staticmethod
    def from_bounds(bounds: Bounds, rows: int, cols: int, *, north_up: bool = True) -> "GridGeometry":
        minx, miny, maxx, maxy = bounds
        if rows <= 0 or cols <= 0:
            raise ValueError("rows/cols deben ser > 0")
        sx = (maxx - minx) / float(cols)
        if north_up:
            return GridGeometry(minx, maxy, sx, (miny - maxy) / float(rows), rows, cols)
        return GridGeometry(minx, miny, sx, (maxy - miny) / float(rows), rows, cols)

    def to_geotransform(self) -> GeoTransform:
        return (self.x0, self.sx, 0.0, self.y0, 0.0, self.sy)

    # --- propiedades ---
    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def bounds(self) -> Bounds:
        x1 = self.x0 + self.cols * self.sx
        y1 = self.y0 + self.rows * self.sy
        return Bounds(min(self.x0, x1), min(self.y0, y1), max(self.x0, x1), max(self.y0, y1))

    def cell_size(self) -> Tuple[float, float]:
        return (self.sx, self.sy)

    def contains_cell(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    # --- mapeos ---
    def cell_to_world(self, row, col):
        """Centro de celda. Acepta escalares o arrays."""
        x = self.x0 + (np.asarray(col) + 0.5) * self.sx
        y = self.y0 + (np.asarray(row) + 0.5) * self.sy
        if np.ndim(x) == 0 and np.ndim(y) == 0:
            return float(x), float(y)
        return x, y

    def world_to_cell_frac(self, x, y):
        """(row, col) fraccionarios; la celda (r, c) cubre [r, r+1) x [c, c+1)."""
        row = (np.asarray(y, dtype=np.float64) - self.y0) / self.sy
        col = (np.asarray(x, dtype=np.float64) - self.x0) / self.sx
        if row.ndim == 0 and col.ndim == 0:
            return float(row), float(col)
        return row, col

    def world_to_cell_unchecked(self, x: float, y: float) -> Tuple[int, int]:
        """Celda que contiene (x, y); puede quedar fuera de la grilla."""
        row, col = self.world_to_cell_frac(x, y)
        return int(math.floor(row)), int(math.floor(col))

    def world_to_cell(self, x: float, y: float) -> Tuple[int, int]:
        """Como world_to_cell_unchecked pero falla con OutOfBounds fuera de la grilla."""
        row, col = self.world_to_cell_unchecked(x, y)
        if not self.contains_cell(row, col):
            raise OutOfBounds(f"({x}, {y}) cae en celda ({row}, {col}) fuera de {self.rows}x{self.cols}")
        return row, col

    def cell_centers(self, rows: range, cols: range) -> Tuple[np.ndarray, np.ndarray]:
        """Mallas (X, Y) de centros para una ventana de filas/columnas."""
        xs = self.x0 + (np.arange(cols.start, cols.stop, dtype=np.float64) + 0.5) * self.sx
        ys = self.y0 + (np.arange(rows.start, rows.stop, dtype=np.float64) + 0.5) * self.sy
        return np.meshgrid(xs, ys)

    def sub_grid(self, row_range: range, col_range: range) -> "GridGeometry":
        r0, r1 = _check_range(row_range, self.rows, "row_range")
        c0, c1 = _check_range(col_range, self.cols, "col_range")
        return GridGeometry(
            x0=self.x0 + c0 * self.sx,
            y0=self.y0 + r0 * self.sy,
            sx=self.sx,
            sy=self.sy,
            rows=r1 - r0,
            cols=c1 - c0,
        )

    def window_for_bounds(self, b: Bounds, *, snap_tol: float = 1e-9) -> Optional[Tuple[range, range]]:
        """
        Rango mínimo de filas/columnas cuyas celdas cubren `b`, recortado a la grilla.
        Devuelve None si no hay ninguna celda en común. Un bbox degenerado
        (punto o línea) produce al menos una fila/columna.
        """
        rows = _index_span((b.miny - self.y0) / self.sy, (b.maxy - self.y0) / self.sy, self.rows, snap_tol)
        cols = _index_span((b.minx - self.x0) / self.sx, (b.maxx - self.x0) / self.sx, self.cols, snap_tol)
        if rows is None or cols is None:
            return None
        return rows, cols


def _snap(v: float, tol: float) -> float:
    r = round(v)
    return float(r) if abs(v - r) <= tol else v


def _index_span(a: float, b: float, n: int, tol: float) -> Optional[range]:
    lo_f, hi_f = _snap(min(a, b), tol), _snap(max(a, b), tol)
    if hi_f < 0 or lo_f > n:
        return None
    lo = int(math.floor(lo_f))
    hi = int(math.ceil(hi_f))
    if hi == lo:
        hi = lo + 1
    lo, hi = max(lo, 0), min(hi, n)
    if hi <= lo:
        return None
    return range(lo, hi)


def _check_range(rg: range, n: int, name: str) -> Tuple[int, int]:
    if rg.step != 1:
        raise InvalidRange(f"{name} debe tener paso 1")
    if len(rg) == 0:
        raise InvalidRange(f"{name} vacío: {rg}")
    if rg.start < 0 or rg.stop > n:
        raise InvalidRange(f"{name}={rg} excede los límites [0, {n})")
    return rg.start, rg.stop

# ---------- Raster (puro dominio) ----------
_KEEP: Any = object()

@dataclass(frozen=True)
class Raster:
    """
    Valores (bands, rows, cols) + grilla + CRS + nodata por banda.
    Inmutable: cualquier cambio produce un Raster nuevo.
    """
    data: "npt.NDArray[Any]"  # type: ignore[valid-type]
    grid: GridGeometry
    crs: Optional[CRSRef] = None
    nodata: Union[NoDataValue, Tuple[NoDataValue, ...]] = None

    def __post_init__(self):
        arr = np.asarray(self.data)
        if arr.ndim == 2:
            arr = arr[np.newaxis, ...]
        if arr.ndim != 3:
            raise ValueError(f"data debe ser 2D o 3D, ndim={arr.ndim}")
        if arr.shape[1:] != self.grid.shape:
            raise GridMismatch(f"data {arr.shape[1:]} no coincide con la grilla {self.grid.shape}")
        # Bloquea mutaciones accidentales sobre los datos
        if arr.flags.writeable:
            arr = arr.copy()
            arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

        nd = self.nodata
        if nd is None or np.isscalar(nd):
            nd = (None if nd is None else float(nd),) * arr.shape[0]
        else:
            nd = tuple(None if v is None else float(v) for v in nd)
        if len(nd) != arr.shape[0]:
            raise ValueError(f"nodata tiene {len(nd)} valores para {arr.shape[0]} bandas")
        object.__setattr__(self, "nodata", nd)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape  # type: ignore[no-any-return]

    @property
    def count(self) -> int:
        return int(self.data.shape[0])

    @property
    def bounds(self) -> Bounds:
        return self.grid.bounds

    def band_nodata(self, band: int) -> NoDataValue:
        return self.nodata[band]  # type: ignore[index]

    def valid_mask(self, band: int) -> np.ndarray:
        return valid_mask(self.data[band], self.band_nodata(band))

    def sub_raster(self, row_range: range, col_range: range) -> "Raster":
        g = self.grid.sub_grid(row_range, col_range)
        data = self.data[:, row_range.start:row_range.stop, col_range.start:col_range.stop]
        return Raster(data, g, self.crs, self.nodata)

    def with_data(self, data: np.ndarray, nodata: Any = _KEEP) -> "Raster":
        return Raster(data, self.grid, self.crs, self.nodata if nodata is _KEEP else nodata)

    def equals(self, other: "Raster") -> bool:
        return (
            self.grid == other.grid
            and ((self.crs is None and other.crs is None)
                 or (self.crs is not None and self.crs.equals(other.crs)))
            and self.nodata == other.nodata
            and np.array_equal(self.data, other.data,
                               equal_nan=self.data.dtype.kind == "f" and other.data.dtype.kind == "f")
        )


def valid_mask(arr: np.ndarray, nodata: NoDataValue) -> np.ndarray:
    """True donde el valor es finito y distinto del centinela."""
    valid = np.isfinite(arr) if arr.dtype.kind == "f" else np.ones(arr.shape, dtype=bool)
    if nodata is not None and not math.isnan(nodata):
        valid &= arr != nodata
    return valid

# ---------- GeoTransform helpers (afines a GDAL pero sin dependencia) ----------
def _gt_close(a: GeoTransform, b: GeoTransform, tol: float = 1e-6) -> bool:
    return all(math.isclose(x, y, rel_tol=0.0, abs_tol=tol) for x, y in zip(a, b))

def validate_grid_compat(a: Raster, b: Raster, *, tol: float = 1e-6) -> None:
    """
    Exige rasters alineados (misma grilla, CRS y número de bandas) antes de
    combinarlos celda a celda. No reproyecta: eso es trabajo del Reprojector.
    """
    require_same_crs(a.crs, b.crs, "raster/raster")
    if a.grid.shape != b.grid.shape:
        raise GridMismatch(f"Dimensiones no coinciden: {a.grid.shape} vs {b.grid.shape}")
    if not _gt_close(a.grid.to_geotransform(), b.grid.to_geotransform(), tol):
        raise GridMismatch("GeoTransform no coincide (requiere reproyección/alineación).")
    if a.count != b.count:
        raise GridMismatch(f"Número de bandas no coincide: {a.count} vs {b.count}")

def pretty_bounds(b: Bounds, ndigits: int = 3) -> str:
    return (f"Bounds(minx={b.minx:.{ndigits}f}, miny={b.miny:.{ndigits}f}, "
            f"maxx={b.maxx:.{ndigits}f}, maxy={b.maxy:.{ndigits}f})")

def bounds_of_points(xs: Sequence[float], ys: Sequence[float]) -> Bounds:
    xa = np.asarray(xs, dtype=np.float64); ya = np.asarray(ys, dtype=np.float64)
    if xa.size == 0:
        raise ValueError("sin vértices para calcular bounds")
    return Bounds(float(xa.min()), float(ya.min()), float(xa.max()), float(ya.max()))

__all__ = [
    "GeoTransform","Bounds","CRSRef","GridGeometry","Raster","NoDataValue",
    "require_crs","require_same_crs","valid_mask","validate_grid_compat",
    "pretty_bounds","bounds_of_points",
]
