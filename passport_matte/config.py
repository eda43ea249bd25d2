from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

BASE_DIR = Path(__file__).resolve().parent
MATTE_CONFIG_PATH = BASE_DIR / "data" / "matte.yaml"


class BackgroundPreset(BaseModel):
    name: str
    color: str


class ChannelDetectionSettings(BaseModel):
    # A channel with a wider range than this carries the signal...
    dominant_range: float = 0.05
    # ...provided the other one stays flatter than this.
    flat_range: float = 0.01
    min_weight_denominator: float = 0.0001


class StretchSettings(BaseModel):
    min_range: float = 0.12
    full_range_low: float = 0.03
    full_range_high: float = 0.97


class PolaritySettings(BaseModel):
    center_x: tuple[float, float] = (0.35, 0.65)
    center_y: tuple[float, float] = (0.25, 0.75)
    margin: float = 0.05


class RefineSettings(BaseModel):
    denoise_radius: int = 2
    threshold_low: float = 0.35
    threshold_high: float = 0.7
    feather_radius: int = 1
    hard_low: float = 0.05
    hard_high: float = 0.95
    threshold_weight: float = 0.65
    feather_weight: float = 0.35


class MatteSettings(BaseModel):
    default_background: str = "#FFFFFF"
    background_presets: list[BackgroundPreset] = Field(default_factory=list)
    detection: ChannelDetectionSettings = Field(default_factory=ChannelDetectionSettings)
    stretch: StretchSettings = Field(default_factory=StretchSettings)
    polarity: PolaritySettings = Field(default_factory=PolaritySettings)
    refine: RefineSettings = Field(default_factory=RefineSettings)


def _config_path() -> Path:
    override = os.getenv("PASSPORT_MATTE_CONFIG", "").strip()
    return Path(override) if override else MATTE_CONFIG_PATH


@lru_cache(maxsize=1)
def load_matte_settings() -> MatteSettings:
    path = _config_path()
    if not path.exists():
        return MatteSettings()
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    return MatteSettings(**raw)


def list_background_presets() -> list[BackgroundPreset]:
    return load_matte_settings().background_presets
