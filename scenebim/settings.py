from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from scenebim.geometry import contract

CONFIG_ENV_VAR = "SCENEBIM_CONFIG"
DEFAULT_CONFIG_PATH = Path("config") / "default.yaml"

# SCENEBIM_CONFIG may come from the project .env
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class KernelSettings(BaseModel):
    # Tolerances (m)
    loop_gap_tolerance: float = Field(contract.LOOP_GAP_TOLERANCE, ge=0.0)
    polygon_vertex_tolerance: float = Field(contract.POLYGON_VERTEX_TOLERANCE, ge=0.0)
    min_curve_length: float = Field(contract.MIN_CURVE_LENGTH, ge=0.0)
    level_tolerance: float = Field(contract.LEVEL_TOLERANCE, ge=0.0)
    min_wall_length: float = Field(contract.MIN_WALL_LENGTH, ge=0.0)

    # Communal wall merging
    wall_extension: float = Field(contract.WALL_EXTENSION, ge=0.0)
    interior_trim_distance: float = Field(contract.INTERIOR_TRIM_DISTANCE, ge=0.0)
    order_tolerance: float = Field(contract.ORDER_TOLERANCE, ge=0.0)
    collinear_tolerance: float = Field(contract.COLLINEAR_TOLERANCE, ge=0.0)
    parallel_tolerance: float = Field(contract.PARALLEL_TOLERANCE, ge=0.0, le=1.0)
    build_gap_walls: bool = False

    # Rooms / levels
    room_point_offset: float = contract.ROOM_POINT_OFFSET
    site_level_name: str = contract.SITE_LEVEL_NAME

    @field_validator("site_level_name", mode="before")
    @classmethod
    def _default_site_level(cls, value: Any) -> str:  # noqa: D401
        if value is None or str(value).strip() == "":
            return contract.SITE_LEVEL_NAME
        return str(value)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    log_file: str | None = None

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> str:  # noqa: D401
        if value is None:
            return "INFO"
        level = str(value).upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class Settings(BaseModel):
    kernel: KernelSettings = Field(default_factory=KernelSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @staticmethod
    def resolve_path(path: Path | str | None = None) -> Path:
        """Explicit path, then ``SCENEBIM_CONFIG``, then ``config/default.yaml``."""
        if path is not None:
            return Path(path)
        return Path(os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Settings":
        """Read a YAML settings file; sections and keys left out keep their defaults.

        Raises:
            FileNotFoundError: If the resolved file does not exist.
            ValueError: If the file is not a mapping or a value is rejected.
        """
        config_path = cls.resolve_path(path)
        if not config_path.is_file():
            raise FileNotFoundError(f"Settings file not found: {config_path}")
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file {config_path} must hold a mapping, got {type(raw).__name__}")
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid settings in {config_path}: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(path)


__all__ = [
    "Settings",
    "KernelSettings",
    "LoggingSettings",
    "get_settings",
]
