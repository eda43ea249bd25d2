from __future__ import annotations

import numpy as np
import pytest

from passport_matte.services.image_ops import SourceImage


class DeferredModel:
    """Model stand-in that holds callbacks until the test delivers a mask."""

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.requests: list[tuple[np.ndarray, object]] = []

    def send(self, image_rgb, on_result) -> None:
        self.requests.append((image_rgb, on_result))

    def deliver(self, index: int, raw_mask) -> None:
        self.requests[index][1](raw_mask)


def solid_source(width: int, height: int, rgb=(255, 0, 0)) -> SourceImage:
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[:, :] = rgb
    return SourceImage.from_array(pixels)


def quadrant_alpha_mask() -> np.ndarray:
    """4x4 RGBA mask whose alpha marks the top-left quadrant."""
    alpha = np.array(
        [
            [255, 255, 0, 0],
            [255, 255, 0, 0],
            [0, 0, 0, 0],
            [0, 0, 0, 0],
        ],
        dtype=np.uint8,
    )
    mask = np.zeros((4, 4, 4), dtype=np.uint8)
    mask[:, :, 3] = alpha
    return mask


def center_block_alpha_mask() -> np.ndarray:
    """4x4 RGBA mask whose alpha marks the central 2x2 block."""
    mask = np.zeros((4, 4, 4), dtype=np.uint8)
    mask[1:3, 1:3, 3] = 255
    return mask


def centered_subject_mask(width: int, height: int, inverted: bool = False) -> np.ndarray:
    mask = np.zeros((height, width), dtype=np.uint8)
    mask[height // 4 : 3 * height // 4, width // 3 : 2 * width // 3] = 255
    return 255 - mask if inverted else mask


@pytest.fixture
def deferred_model() -> DeferredModel:
    return DeferredModel()
