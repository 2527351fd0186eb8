# src/rasterzone/config.py
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .contracts.core import EmptyPolicy, Resampling

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Config unificada del núcleo. No toca disco.
    Debe ser construida y provista por composition/di.py (o por el llamador).
    """
    # --- remuestreo / reproyección ---
    default_resampling: Resampling = Resampling.NEAREST
    reproject_chunk_rows: int = Field(256, ge=1)

    # --- paralelismo (fan-out/fan-in; 1 = secuencial) ---
    max_workers: int = Field(1, ge=1)

    # --- tolerancias ---
    # fracción del tamaño de celda bajo la cual un centro se considera "sobre el borde"
    edge_tolerance: float = Field(1e-9, ge=0.0)
    # tolerancia absoluta al comparar geotransforms
    grid_tolerance: float = Field(1e-6, ge=0.0)

    # --- cobertura parcial ---
    coverage_samples: int = Field(4, ge=1, le=64)

    # --- lotes ---
    empty_policy: EmptyPolicy = EmptyPolicy.RAISE

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        frozen=True,
        env_file=".env",
        env_prefix="RASTERZONE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    # ----------------------------
    # Normalizadores / validadores
    # ----------------------------
    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        v2 = str(v).strip().upper()
        if v2 not in _LOG_LEVELS:
            raise ValueError(f"log_level inválido: {v}")
        return v2

    @field_validator("default_resampling", "empty_policy", mode="before")
    @classmethod
    def _lower_enum(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Instancia cacheada (lee entorno RASTERZONE_* y .env).
    Para tests, recuerda limpiar:
        get_settings.cache_clear()
    """
    return Settings()
