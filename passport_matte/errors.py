from __future__ import annotations


class SegmentationError(Exception):
    """Base class for failures of a segmentation job."""


class InvalidMaskError(SegmentationError, ValueError):
    """The model returned no mask, or a mask without readable pixel data."""


class DimensionMismatchError(SegmentationError, ValueError):
    """A matte does not cover the source image pixel for pixel."""


class JobInterruptedError(SegmentationError):
    """A pending job was superseded by a newer submission."""


class ModelUnavailableError(SegmentationError):
    """The segmentation model is missing or failed to initialize."""
