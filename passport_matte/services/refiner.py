from __future__ import annotations

import numpy as np

from passport_matte.config import RefineSettings, load_matte_settings
from passport_matte.services.blur import box_blur


def smoothstep(edge0: float, edge1: float, value):
    value = np.asarray(value, dtype=np.float32)
    if edge0 == edge1:
        return np.where(value < edge0, 0.0, 1.0).astype(np.float32)
    t = np.clip((value - edge0) / (edge1 - edge0), 0.0, 1.0)
    return (t * t * (3.0 - 2.0 * t)).astype(np.float32)


def refine_matte(confidence: np.ndarray, settings: RefineSettings | None = None) -> np.ndarray:
    """Turn a confidence field into an alpha matte.

    Denoise, push values towards 0/1 with a smooth threshold, then feather only
    the uncertain band so confident interior and exterior pixels stay crisp.
    """
    settings = settings or load_matte_settings().refine
    confidence = np.asarray(confidence, dtype=np.float32)
    if confidence.ndim != 2:
        raise ValueError("Confidence field must be a 2D (height, width) array.")

    denoised = box_blur(confidence, settings.denoise_radius)
    thresholded = smoothstep(settings.threshold_low, settings.threshold_high, denoised)
    feathered = box_blur(thresholded, settings.feather_radius)

    blended = settings.threshold_weight * thresholded + settings.feather_weight * feathered
    matte = np.where(
        thresholded <= settings.hard_low,
        0.0,
        np.where(thresholded >= settings.hard_high, 1.0, blended),
    )
    return np.clip(matte, 0.0, 1.0).astype(np.float32)
