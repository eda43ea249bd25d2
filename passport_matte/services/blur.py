from __future__ import annotations

import numpy as np


def _blur_axis(field: np.ndarray, radius: int, axis: int) -> np.ndarray:
    length = field.shape[axis]
    window = 2 * radius + 1
    pad = [(0, 0)] * field.ndim
    # One extra leading sample so window sums are differences of the running sum.
    pad[axis] = (radius + 1, radius)
    padded = np.pad(field.astype(np.float64), pad, mode="edge")
    running = np.cumsum(padded, axis=axis)
    upper = np.take(running, np.arange(window, window + length), axis=axis)
    lower = np.take(running, np.arange(0, length), axis=axis)
    return (upper - lower) / float(window)


def box_blur(field: np.ndarray, radius: int) -> np.ndarray:
    """Mean filter over a (2*radius+1)^2 window, clamping samples to the nearest edge.

    Runs as a horizontal then a vertical pass; each pass costs O(height*width)
    whatever the radius.
    """
    field = np.asarray(field)
    if field.ndim != 2:
        raise ValueError("box_blur expects a 2D (height, width) field")
    if radius <= 0 or field.size == 0:
        return field.copy()
    dtype = field.dtype if np.issubdtype(field.dtype, np.floating) else np.float32
    horizontal = _blur_axis(field, int(radius), axis=1)
    vertical = _blur_axis(horizontal, int(radius), axis=0)
    return vertical.astype(dtype)
