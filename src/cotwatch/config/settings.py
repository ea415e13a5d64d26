# src/cotwatch/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/cotwatch/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `COTWATCH_LOG_LEVEL`, `COTWATCH_MAX_ENTITIES`)
- an external YAML file via `COTWATCH_CONFIG_PATH`

Design rule:
- Tuning knobs (staleness window, stop thresholds, grid resolution) live in YAML, not
  hard-coded in engine logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any
from cotwatch.core.env import load_dotenv_if_present

import yaml
from pydantic import BaseModel, Field


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `cotwatch.config`."""
    text = resources.files("cotwatch.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "cotwatch"
    timezone: str = "UTC"
    log_level: str = "INFO"


class NormalizerSettings(BaseModel):
    default_stale_seconds: int = Field(300, gt=0)
    unknown_sentinels: list[float] = Field(default_factory=lambda: [9999999.0, 999999.0])


class StoreSettings(BaseModel):
    staleness_window_seconds: float = Field(0, ge=0)
    max_entities: int | None = Field(default=None, gt=0)
    sweep_ttl_seconds: float | None = Field(default=None, ge=0)


class HistorySettings(BaseModel):
    max_points_per_entity: int = Field(5000, gt=1)


class SpatialSettings(BaseModel):
    default_radius_m: float = Field(1000, gt=0)
    default_max_results: int = Field(10, ge=1, le=100)
    h3_resolution: int = Field(9, ge=0, le=15)
    mgrs_precision: int = Field(5, ge=0, le=5)
    enrich_grid: bool = True


class GeofenceSettings(BaseModel):
    overlay_stale_hours: float = Field(24, gt=0)
    overlay_circle_steps: int = Field(64, ge=8)
    default_monitored_kinds: list[str] = Field(default_factory=lambda: ["a-*"])


class AnalysisSettings(BaseModel):
    default_window_hours: float = Field(24, gt=0)
    circular_turn_threshold_deg: float = Field(300, gt=0)
    stop_distance_m: float = Field(50, gt=0)
    stop_min_duration_s: float = Field(300, ge=0)
    default_anomaly_threshold: float = Field(0.8, ge=0, le=1)
    default_types: list[str] = Field(default_factory=lambda: ["speed", "pattern"])


class AlertSettings(BaseModel):
    max_alerts: int = Field(10_000, gt=0)
    emergency_stale_hours: float = Field(4, gt=0)
    emergency_max_listed_units: int = Field(10, ge=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    normalizer: NormalizerSettings = Field(default_factory=NormalizerSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    spatial: SpatialSettings = Field(default_factory=SpatialSettings)
    geofence: GeofenceSettings = Field(default_factory=GeofenceSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("COTWATCH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    window = os.getenv("COTWATCH_STALENESS_WINDOW_SECONDS")
    if window:
        data.setdefault("store", {})["staleness_window_seconds"] = float(window)

    max_entities = os.getenv("COTWATCH_MAX_ENTITIES")
    if max_entities:
        data.setdefault("store", {})["max_entities"] = int(max_entities)

    return data


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load and validate settings (uncached; prefer `get_settings()` in app code)."""
    load_dotenv_if_present()
    path = config_path or os.getenv("COTWATCH_CONFIG_PATH")
    raw = _read_yaml_file(path) if path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    return load_settings()


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
