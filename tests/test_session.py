import numpy as np
import pytest

from conftest import (
    DeferredModel,
    center_block_alpha_mask,
    centered_subject_mask,
    quadrant_alpha_mask,
    solid_source,
)
from passport_matte.errors import (
    DimensionMismatchError,
    InvalidMaskError,
    JobInterruptedError,
    ModelUnavailableError,
)
from passport_matte.services import compositor, ingestion, normalizer, refiner
from passport_matte.services.segmenter import StaticMaskModel
from passport_matte.services.session import JobState, SegmentationSession

RED = np.array([255, 0, 0], dtype=np.uint8)
BLUE = np.array([0, 0, 255], dtype=np.uint8)


class TestSubmission:
    def test_missing_model_is_reported_before_pixel_work(self):
        session = SegmentationSession(model=None)
        with pytest.raises(ModelUnavailableError):
            session.submit(solid_source(4, 4))
        assert session.state == JobState.IDLE
        assert session.source is None

    def test_model_not_ready(self):
        session = SegmentationSession(model=DeferredModel(ready=False))
        with pytest.raises(ModelUnavailableError):
            session.submit(solid_source(4, 4))

    def test_submit_waits_for_result(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(4, 4))
        assert not future.done()
        assert session.state == JobState.AWAITING_RESULT
        image_rgb, _ = deferred_model.requests[0]
        assert image_rgb.shape == (4, 4, 3)

    def test_new_submission_interrupts_pending_job(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        first = session.submit(solid_source(4, 4))
        second = session.submit(solid_source(4, 4))

        with pytest.raises(JobInterruptedError):
            first.result(timeout=0)
        assert not second.done()
        assert session.pending_job is not None
        assert session.pending_job.future is second

    def test_stale_result_is_discarded(self, deferred_model):
        session = SegmentationSession(model=deferred_model, background="#0000FF")
        first = session.submit(solid_source(40, 40))
        second = session.submit(solid_source(40, 40, rgb=(0, 255, 0)))

        deferred_model.deliver(0, center_block_alpha_mask())
        assert not second.done()
        assert session.matte is None

        deferred_model.deliver(1, center_block_alpha_mask())
        assert second.done()
        assert first.exception(timeout=0).__class__ is JobInterruptedError
        assert second.result(timeout=0).rgba[39, 39, :3].tolist() == [0, 0, 255]
        assert second.result(timeout=0).rgba[20, 20, :3].tolist() == [0, 255, 0]

    def test_cancelled_job_is_preempted_cleanly(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        first = session.submit(solid_source(4, 4))
        assert first.cancel()

        second = session.submit(solid_source(4, 4))
        assert first.cancelled()
        assert not second.done()
        assert session.pending_job.future is second
        assert len(deferred_model.requests) == 2

    def test_cancelled_job_result_is_dropped(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(40, 40))
        future.cancel()

        deferred_model.deliver(0, center_block_alpha_mask())
        assert future.cancelled()
        assert session.pending_job is None
        assert session.matte is None
        assert session.result is None
        assert session.state == JobState.REJECTED

        retry = session.submit(solid_source(40, 40))
        deferred_model.deliver(1, center_block_alpha_mask())
        assert retry.result(timeout=0).width == 40

    def test_duplicate_result_is_ignored(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(4, 4))
        deferred_model.deliver(0, quadrant_alpha_mask())
        result = future.result(timeout=0)
        deferred_model.deliver(0, None)
        assert session.result is result
        assert session.state == JobState.RESOLVED

    def test_dispatch_failure_rejects_job(self):
        class Broken:
            ready = True

            def send(self, image_rgb, on_result):
                raise RuntimeError("model crashed")

        session = SegmentationSession(model=Broken())
        future = session.submit(solid_source(2, 2))
        with pytest.raises(RuntimeError):
            future.result(timeout=0)
        assert session.state == JobState.REJECTED
        assert session.pending_job is None


class TestResultDelivery:
    def test_missing_mask_rejects(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(4, 4))
        deferred_model.deliver(0, None)
        with pytest.raises(InvalidMaskError):
            future.result(timeout=0)
        assert session.state == JobState.REJECTED
        assert session.matte is None
        assert session.result is None

    def test_dimension_mismatch_rejects(self, deferred_model, monkeypatch):
        monkeypatch.setattr(refiner, "refine_matte", lambda confidence: np.ones((2, 2), dtype=np.float32))
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(4, 4))
        deferred_model.deliver(0, quadrant_alpha_mask())
        with pytest.raises(DimensionMismatchError):
            future.result(timeout=0)
        assert session.state == JobState.REJECTED

    def test_unexpected_failure_rejects(self, deferred_model, monkeypatch):
        def explode(confidence):
            raise RuntimeError("refiner failure")

        monkeypatch.setattr(refiner, "refine_matte", explode)
        session = SegmentationSession(model=deferred_model)
        future = session.submit(solid_source(4, 4))
        deferred_model.deliver(0, quadrant_alpha_mask())
        with pytest.raises(RuntimeError):
            future.result(timeout=0)

    def test_off_center_quadrant_reads_as_background(self):
        # Top-left quadrant mask: the central column reads lower than the border,
        # so polarity correction treats the quadrant as background.
        session = SegmentationSession(model=StaticMaskModel(quadrant_alpha_mask()), background="#0000FF")
        result = session.submit(solid_source(4, 4)).result(timeout=0)

        assert np.all(result.rgba[:, :, 3] == 255)
        outside = np.ones((4, 4), dtype=bool)
        outside[:2, :2] = False
        assert np.all(result.rgba[outside][:, :3] == RED)
        assert result.rgba[0, 0, :3].tolist() == [0, 0, 255]

    def test_center_block_mask_upscaled(self):
        session = SegmentationSession(model=StaticMaskModel(center_block_alpha_mask()), background="#0000FF")
        result = session.submit(solid_source(40, 40)).result(timeout=0)

        assert session.state == JobState.RESOLVED
        assert np.all(result.rgba[:, :, 3] == 255)
        assert np.all(result.rgba[17:23, 17:23, :3] == RED)
        assert np.all(result.rgba[:3, :, :3] == BLUE)
        assert np.all(result.rgba[37:, :, :3] == BLUE)
        assert np.all(result.rgba[:, :3, :3] == BLUE)
        assert np.all(result.rgba[:, 37:, :3] == BLUE)

    def test_inverted_polarity_marks_center_as_foreground(self):
        inverted = centered_subject_mask(30, 30, inverted=True)
        session = SegmentationSession(model=StaticMaskModel(inverted), background="#0000FF")
        session.submit(solid_source(30, 30)).result(timeout=0)

        assert session.matte[15, 15] == 1.0
        assert session.matte[0, 0] == 0.0
        assert session.result.rgba[15, 15, :3].tolist() == [255, 0, 0]
        assert session.result.rgba[0, 0, :3].tolist() == [0, 0, 255]


class TestChangeBackground:
    def test_without_matte_only_stores_color(self, deferred_model):
        session = SegmentationSession(model=deferred_model)
        assert session.change_background("#123") is None
        assert session.background == "#112233"

    def test_background_change_while_pending_applies_on_delivery(self, deferred_model):
        session = SegmentationSession(model=deferred_model, background="#FFFFFF")
        future = session.submit(solid_source(40, 40))
        session.change_background("#00FF00")
        deferred_model.deliver(0, center_block_alpha_mask())
        assert future.result(timeout=0).rgba[39, 39, :3].tolist() == [0, 255, 0]

    def test_recomposite_reuses_existing_matte(self, monkeypatch):
        calls = {"ingest": 0, "normalize": 0, "refine": 0, "composite": 0}

        def counting(module, name, key):
            original = getattr(module, name)

            def wrapper(*args, **kwargs):
                calls[key] += 1
                return original(*args, **kwargs)

            monkeypatch.setattr(module, name, wrapper)

        counting(ingestion, "ingest_mask", "ingest")
        counting(normalizer, "normalize_confidence", "normalize")
        counting(refiner, "refine_matte", "refine")
        counting(compositor, "composite", "composite")

        model = DeferredModel()
        session = SegmentationSession(model=model, background="#0000FF")
        session.submit(solid_source(40, 40))
        model.deliver(0, center_block_alpha_mask())
        matte = session.matte
        assert calls == {"ingest": 1, "normalize": 1, "refine": 1, "composite": 1}

        result = session.change_background("#00ff00")
        assert calls == {"ingest": 1, "normalize": 1, "refine": 1, "composite": 2}
        assert len(model.requests) == 1
        assert session.matte is matte
        assert result.background_color == "#00FF00"
        assert result.rgba[39, 39, :3].tolist() == [0, 255, 0]
        assert result.rgba[20, 20, :3].tolist() == [255, 0, 0]
