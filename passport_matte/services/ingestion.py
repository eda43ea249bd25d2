from __future__ import annotations

from functools import singledispatch
from typing import Any, Protocol, runtime_checkable

import cv2
import numpy as np
from PIL import Image

from passport_matte.errors import InvalidMaskError


@runtime_checkable
class ConfidenceSource(Protocol):
    """Anything that can hand over a mask as four 8-bit samples per pixel."""

    @property
    def size(self) -> tuple[int, int]:
        ...

    def rgba_samples(self) -> np.ndarray:
        ...


def _to_uint8(array: np.ndarray) -> np.ndarray:
    if array.dtype == np.uint8:
        return array
    if array.dtype == np.bool_:
        return array.astype(np.uint8) * 255
    values = array.astype(np.float32)
    if not np.all(np.isfinite(values)):
        values = np.nan_to_num(values, nan=0.0, posinf=255.0, neginf=0.0)
    # Masks in [0, 1] (probabilities or 0/1 label maps) scale up; anything wider is already 0..255.
    if float(values.max(initial=0.0)) <= 1.0:
        values = values * 255.0
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


class ArrayMaskSource:
    def __init__(self, array: np.ndarray) -> None:
        if array.size == 0:
            raise InvalidMaskError("Segmentation mask carries no pixel data.")
        if array.ndim == 3 and array.shape[2] == 1:
            array = array[:, :, 0]
        if array.ndim not in (2, 3) or (array.ndim == 3 and array.shape[2] not in (3, 4)):
            raise InvalidMaskError(f"Unsupported segmentation mask shape {array.shape}.")
        self._array = array

    @property
    def size(self) -> tuple[int, int]:
        return int(self._array.shape[1]), int(self._array.shape[0])

    def rgba_samples(self) -> np.ndarray:
        values = _to_uint8(self._array)
        h, w = values.shape[:2]
        samples = np.full((h, w, 4), 255, dtype=np.uint8)
        if values.ndim == 2:
            # Same layout a grayscale mask gets once drawn onto an RGBA canvas.
            samples[:, :, :3] = values[:, :, None]
        elif values.shape[2] == 3:
            samples[:, :, :3] = values
        else:
            samples[:] = values
        return samples


class PilMaskSource:
    def __init__(self, image: Image.Image) -> None:
        if image.width <= 0 or image.height <= 0:
            raise InvalidMaskError("Segmentation mask carries no pixel data.")
        self._image = image

    @property
    def size(self) -> tuple[int, int]:
        return int(self._image.width), int(self._image.height)

    def rgba_samples(self) -> np.ndarray:
        try:
            rgba = self._image.convert("RGBA")
        except (OSError, ValueError) as exc:
            raise InvalidMaskError("Segmentation mask could not be read.") from exc
        return np.array(rgba, dtype=np.uint8)


@singledispatch
def as_confidence_source(raw: Any) -> ConfidenceSource:
    if raw is None:
        raise InvalidMaskError("Segmentation did not return a mask.")
    if isinstance(raw, ConfidenceSource):
        return raw
    raise InvalidMaskError(f"Unsupported segmentation mask type {type(raw).__name__}.")


@as_confidence_source.register(np.ndarray)
def _(raw: np.ndarray) -> ConfidenceSource:
    return ArrayMaskSource(raw)


@as_confidence_source.register(Image.Image)
def _(raw: Image.Image) -> ConfidenceSource:
    return PilMaskSource(raw)


def ingest_mask(raw_mask: Any, width: int, height: int) -> np.ndarray:
    """Return a (height, width, 4) uint8 array of mask samples at the target size."""
    if width <= 0 or height <= 0:
        raise ValueError("Target mask size must be positive.")

    source = as_confidence_source(raw_mask)
    samples = np.asarray(source.rgba_samples())
    if samples.ndim != 3 or samples.shape[2] != 4 or samples.size == 0:
        raise InvalidMaskError("Segmentation mask carries no readable pixel data.")
    if samples.dtype != np.uint8:
        samples = _to_uint8(samples)

    src_h, src_w = samples.shape[:2]
    if (src_w, src_h) == (width, height):
        return samples.copy()

    shrinking = width * height < src_w * src_h
    resized = cv2.resize(
        np.ascontiguousarray(samples),
        (width, height),
        interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR,
    )
    return resized.reshape(height, width, 4)
