from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from passport_matte.config import (
    ChannelDetectionSettings,
    PolaritySettings,
    StretchSettings,
    load_matte_settings,
)


@dataclass(frozen=True)
class ChannelSelection:
    use_alpha_only: bool
    use_color_only: bool
    color_weight: float
    alpha_weight: float


def _split_signals(samples: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    if samples.ndim != 3 or samples.shape[2] != 4:
        raise ValueError("Mask samples must be a (height, width, 4) array.")
    color = samples[:, :, :3].max(axis=2).astype(np.float32) / 255.0
    alpha = samples[:, :, 3].astype(np.float32) / 255.0
    return color, alpha


def detect_channels(
    samples: np.ndarray,
    settings: ChannelDetectionSettings | None = None,
) -> ChannelSelection:
    """Work out whether the color channels, the alpha channel, or both carry the mask."""
    settings = settings or load_matte_settings().detection
    color, alpha = _split_signals(samples)
    color_range = float(color.max() - color.min())
    alpha_range = float(alpha.max() - alpha.min())

    use_alpha_only = alpha_range > settings.dominant_range and color_range < settings.flat_range
    use_color_only = color_range > settings.dominant_range and alpha_range < settings.flat_range
    denominator = max(color_range + alpha_range, settings.min_weight_denominator)
    color_weight = color_range / denominator
    return ChannelSelection(
        use_alpha_only=use_alpha_only,
        use_color_only=use_color_only,
        color_weight=color_weight,
        alpha_weight=1.0 - color_weight,
    )


def build_confidence(samples: np.ndarray, channels: ChannelSelection) -> np.ndarray:
    color, alpha = _split_signals(samples)
    if channels.use_alpha_only:
        field = alpha
    elif channels.use_color_only:
        field = color
    else:
        field = channels.color_weight * color + channels.alpha_weight * alpha
    return np.clip(field, 0.0, 1.0).astype(np.float32)


def stretch_confidence(field: np.ndarray, settings: StretchSettings | None = None) -> np.ndarray:
    settings = settings or load_matte_settings().stretch
    field = np.asarray(field, dtype=np.float32)
    low = float(field.min())
    high = float(field.max())
    value_range = high - low
    # Near-flat fields would only have their noise amplified.
    if value_range < settings.min_range:
        return field.copy()
    if low <= settings.full_range_low and high >= settings.full_range_high:
        return field.copy()
    return ((field - low) / value_range).astype(np.float32)


def _center_bounds(size: int, bounds: tuple[float, float]) -> tuple[int, int]:
    # Closed interval [lo * size, hi * size]; rounding absorbs float error such as 0.35 * 20.
    start = min(max(int(math.ceil(round(bounds[0] * size, 6))), 0), size - 1)
    stop = min(max(int(math.floor(round(bounds[1] * size, 6))) + 1, start + 1), size)
    return start, stop


def correct_polarity(field: np.ndarray, settings: PolaritySettings | None = None) -> np.ndarray:
    """Invert the field when the border reads as more confident than the center.

    The subject of a passport photo sits in the middle of the frame, so a mask
    whose center scores lower than its surroundings uses the opposite convention.
    """
    settings = settings or load_matte_settings().polarity
    field = np.asarray(field, dtype=np.float32)
    h, w = field.shape
    x0, x1 = _center_bounds(w, settings.center_x)
    y0, y1 = _center_bounds(h, settings.center_y)

    center = np.zeros((h, w), dtype=bool)
    center[y0:y1, x0:x1] = True
    if center.all():
        return field.copy()

    center_mean = float(field[center].mean())
    edge_mean = float(field[~center].mean())
    if center_mean + settings.margin >= edge_mean:
        return field.copy()
    return (1.0 - field).astype(np.float32)


def normalize_confidence(samples: np.ndarray) -> np.ndarray:
    settings = load_matte_settings()
    channels = detect_channels(samples, settings.detection)
    field = build_confidence(samples, channels)
    field = stretch_confidence(field, settings.stretch)
    field = correct_polarity(field, settings.polarity)
    field.setflags(write=False)
    return field
