from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, runtime_checkable

import numpy as np

try:
    import mediapipe as mp
except Exception:  # pragma: no cover
    mp = None

LOG = logging.getLogger("passport_matte.segmenter")

MaskCallback = Callable[[Any], None]


@runtime_checkable
class SegmentationModel(Protocol):
    """External person/background model.

    ``send`` accepts an RGB image and calls ``on_result`` exactly once with a raw
    mask of unspecified encoding, possibly before ``send`` returns.
    """

    @property
    def ready(self) -> bool:
        ...

    def send(self, image_rgb: np.ndarray, on_result: MaskCallback) -> None:
        ...


class MediaPipeSelfieSegmenter:
    def __init__(self) -> None:
        self.segmentation_mediapipe = None
        if mp is not None:
            try:
                self.segmentation_mediapipe = mp.solutions.selfie_segmentation.SelfieSegmentation(model_selection=1)
            except Exception:
                LOG.warning("mediapipe_init_failed model=selfie_segmentation", exc_info=True)
                self.segmentation_mediapipe = None

    @property
    def ready(self) -> bool:
        return self.segmentation_mediapipe is not None

    def send(self, image_rgb: np.ndarray, on_result: MaskCallback) -> None:
        if self.segmentation_mediapipe is None:
            raise RuntimeError("MediaPipe segmentation unavailable.")
        result = self.segmentation_mediapipe.process(np.ascontiguousarray(image_rgb))
        on_result(result.segmentation_mask)


class StaticMaskModel:
    """Answers every request with a mask computed elsewhere (e.g. uploaded by the client)."""

    def __init__(self, mask: Any) -> None:
        self._mask = mask

    @property
    def ready(self) -> bool:
        return True

    def send(self, image_rgb: np.ndarray, on_result: MaskCallback) -> None:
        on_result(self._mask)
