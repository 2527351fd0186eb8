# src/rasterzone/contracts/core.py
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator

# -------------------------
# Operaciones
# -------------------------
class ReduceOp(str, Enum):
    MEAN = "mean"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    NONE = "none"  # valores crudos (equivale a values())


class Resampling(str, Enum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"


class AlgebraOp(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"


class EmptyPolicy(str, Enum):
    """Qué hacer cuando una geometría no solapa el raster en operaciones por lote."""
    RAISE = "raise"
    SKIP = "skip"

# -------------------------
# Ejecuciones / auditoría
# -------------------------
class Stage(str, Enum):
    """Operaciones por lote que registran RunError en vez de abortar."""
    CROP = "crop"


class RunError(BaseModel):
    """Fallo local registrado en un lote (no aborta el lote)."""
    model_config = ConfigDict(frozen=True)
    stage: Stage
    message: str
    kind: str = Field(default="RasterzoneError")
    index: Optional[NonNegativeInt] = None
    detail: str | None = None

    @field_validator("message")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("message no puede ser vacío")
        return v2

    @classmethod
    def from_exception(cls, stage: Stage, exc: Exception, index: Optional[int] = None) -> "RunError":
        return cls(stage=stage, message=str(exc) or type(exc).__name__, kind=type(exc).__name__, index=index)
