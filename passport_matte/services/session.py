from __future__ import annotations

import itertools
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from passport_matte.config import load_matte_settings
from passport_matte.errors import JobInterruptedError, ModelUnavailableError
from passport_matte.services import compositor, ingestion, normalizer, refiner
from passport_matte.services.color import normalize_hex
from passport_matte.services.compositor import CompositeResult
from passport_matte.services.image_ops import SourceImage
from passport_matte.services.segmenter import SegmentationModel

LOG = logging.getLogger("passport_matte.session")

_JOB_IDS = itertools.count(1)


class JobState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_RESULT = "awaiting_result"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass
class SegmentationJob:
    job_id: int
    source: SourceImage
    future: Future = field(default_factory=Future)
    state: JobState = JobState.AWAITING_MODEL

    def resolve(self, result: CompositeResult) -> None:
        self.state = JobState.RESOLVED
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        self.state = JobState.REJECTED
        # The caller may already have cancelled the future.
        if not self.future.done():
            self.future.set_exception(error)


class SegmentationSession:
    """Background replacement for one source image at a time.

    At most one job waits on the model. A new submission rejects the waiting
    job with ``JobInterruptedError``; the model is not told, so its late answer
    is recognised by job id and dropped.
    """

    def __init__(self, model: SegmentationModel | None, background: str | None = None) -> None:
        self.model = model
        self.background = normalize_hex(background or load_matte_settings().default_background)
        self.source: SourceImage | None = None
        self.matte: np.ndarray | None = None
        self.result: CompositeResult | None = None
        self._pending: SegmentationJob | None = None
        self._last: SegmentationJob | None = None

    @property
    def state(self) -> JobState:
        job = self._pending or self._last
        return job.state if job is not None else JobState.IDLE

    @property
    def pending_job(self) -> SegmentationJob | None:
        return self._pending

    def submit(self, source: SourceImage, background: str | None = None) -> Future:
        if self.model is None or not self.model.ready:
            raise ModelUnavailableError("Segmentation model is not available.")

        previous = self._pending
        if previous is not None and previous.state == JobState.AWAITING_RESULT:
            self._pending = None
            LOG.info("job_interrupted job=%s superseded_by_next=true", previous.job_id)
            previous.reject(JobInterruptedError(f"Segmentation job {previous.job_id} was superseded."))

        if background is not None:
            self.background = normalize_hex(background)
        self.source = source
        self.matte = None
        self.result = None

        job = SegmentationJob(job_id=next(_JOB_IDS), source=source)
        self._pending = job
        self._last = job
        model_input = source.rgb

        job.state = JobState.AWAITING_RESULT
        LOG.debug("job_submitted job=%s size=%sx%s", job.job_id, source.width, source.height)
        try:
            self.model.send(model_input, lambda raw_mask: self._deliver(job.job_id, raw_mask))
        except Exception as exc:
            LOG.warning("job_dispatch_failed job=%s error=%s", job.job_id, exc)
            if self._pending is job:
                self._pending = None
                job.reject(exc)
        return job.future

    def _deliver(self, job_id: int, raw_mask: Any) -> None:
        job = self._pending
        if job is None or job.job_id != job_id:
            LOG.debug("stale_result_discarded job=%s", job_id)
            return
        self._pending = None
        if job.future.cancelled():
            job.state = JobState.REJECTED
            LOG.info("cancelled_result_discarded job=%s", job_id)
            return

        source = job.source
        try:
            samples = ingestion.ingest_mask(raw_mask, source.width, source.height)
            confidence = normalizer.normalize_confidence(samples)
            matte = refiner.refine_matte(confidence)
            result = compositor.composite(source, matte, self.background)
        except ValueError as exc:
            LOG.warning("job_rejected job=%s error=%s", job_id, exc)
            job.reject(exc)
            return
        except Exception as exc:
            LOG.exception("job_failed job=%s", job_id)
            job.reject(exc)
            return

        matte.setflags(write=False)
        self.matte = matte
        self.result = result
        job.resolve(result)

    def change_background(self, background: str) -> CompositeResult | None:
        self.background = normalize_hex(background)
        if self.matte is None or self.source is None:
            return None
        self.result = compositor.composite(self.source, self.matte, self.background)
        return self.result
