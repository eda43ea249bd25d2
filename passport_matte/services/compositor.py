from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from passport_matte.errors import DimensionMismatchError
from passport_matte.services.color import normalize_hex, to_rgb
from passport_matte.services.image_ops import SourceImage


@dataclass(frozen=True)
class CompositeResult:
    rgba: np.ndarray
    background_color: str

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])


def composite(source: SourceImage, matte: np.ndarray, background: str) -> CompositeResult:
    matte = np.asarray(matte)
    if matte.size != source.width * source.height:
        raise DimensionMismatchError(
            f"Matte has {matte.size} values but the source image is "
            f"{source.width}x{source.height}."
        )

    color = normalize_hex(background)
    alpha = np.clip(matte.reshape(source.height, source.width).astype(np.float64), 0.0, 1.0)[:, :, None]
    bg = np.array(to_rgb(color), dtype=np.float64)
    fg = source.rgba[:, :, :3].astype(np.float64)

    blended = fg * alpha + bg * (1.0 - alpha)
    out = np.empty((source.height, source.width, 4), dtype=np.uint8)
    out[:, :, :3] = np.clip(np.floor(blended + 0.5), 0, 255).astype(np.uint8)
    # The matte only drives color blending; the output is never transparent.
    out[:, :, 3] = 255
    out.setflags(write=False)
    return CompositeResult(rgba=out, background_color=color)
