from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from io import BytesIO

import cv2
import numpy as np
from PIL import Image, ImageOps

MAX_DECODE_MEGAPIXELS = max(1.0, float(os.getenv("PASSPORT_MATTE_MAX_DECODE_MEGAPIXELS", "36")))
MAX_DECODE_PIXELS = int(MAX_DECODE_MEGAPIXELS * 1_000_000)
Image.MAX_IMAGE_PIXELS = MAX_DECODE_PIXELS


@dataclass(frozen=True)
class SourceImage:
    rgba: np.ndarray

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    @property
    def rgb(self) -> np.ndarray:
        return np.ascontiguousarray(self.rgba[:, :, :3])

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> SourceImage:
        pixels = np.asarray(pixels)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError("Source image must be an RGB or RGBA pixel buffer.")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Source image is empty.")
        rgba = np.full((pixels.shape[0], pixels.shape[1], 4), 255, dtype=np.uint8)
        rgba[:, :, : pixels.shape[2]] = np.clip(pixels, 0, 255).astype(np.uint8)
        rgba.setflags(write=False)
        return cls(rgba=rgba)


def _enforce_decode_pixel_limit(width: int, height: int) -> None:
    total_pixels = int(width) * int(height)
    if total_pixels > MAX_DECODE_PIXELS:
        raise ValueError(
            "Image resolution is too large to process safely. "
            f"Maximum decode limit is {MAX_DECODE_MEGAPIXELS:.0f} megapixels."
        )


def _open_image(file_bytes: bytes) -> Image.Image:
    try:
        pil_img = Image.open(BytesIO(file_bytes))
        _enforce_decode_pixel_limit(*pil_img.size)
        pil_img.load()
        return pil_img
    except Image.DecompressionBombError as exc:
        raise ValueError(
            "Image resolution is too large to process safely. "
            f"Maximum decode limit is {MAX_DECODE_MEGAPIXELS:.0f} megapixels."
        ) from exc
    except ValueError:
        raise
    except Exception as exc:
        raise ValueError("Unable to decode image. Please upload a valid JPG/PNG image.") from exc


def decode_image_bytes(file_bytes: bytes) -> SourceImage:
    # Applies EXIF orientation, including mirrored modes.
    pil_img = ImageOps.exif_transpose(_open_image(file_bytes)).convert("RGBA")
    return SourceImage.from_array(np.asarray(pil_img))


def decode_mask_bytes(file_bytes: bytes) -> Image.Image:
    # Masks are model output; orientation metadata is not applied.
    return _open_image(file_bytes)


def encode_png_base64(rgba_image: np.ndarray) -> str:
    bgra = cv2.cvtColor(np.ascontiguousarray(rgba_image), cv2.COLOR_RGBA2BGRA)
    ok, encoded = cv2.imencode(".png", bgra)
    if not ok:
        raise RuntimeError("Failed to encode processed image")
    return base64.b64encode(encoded.tobytes()).decode("ascii")


def encode_jpeg_base64(rgba_image: np.ndarray, quality: int = 95) -> str:
    bgr = cv2.cvtColor(np.ascontiguousarray(rgba_image), cv2.COLOR_RGBA2BGR)
    ok, encoded = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("Failed to encode processed image")
    return base64.b64encode(encoded.tobytes()).decode("ascii")
