from __future__ import annotations

import logging
import os
import threading
import uuid
from collections import OrderedDict
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from passport_matte.config import list_background_presets, load_matte_settings
from passport_matte.errors import ModelUnavailableError
from passport_matte.schemas import BackgroundPresetInfo, OutputFormat, SessionResponse
from passport_matte.services.compositor import CompositeResult
from passport_matte.services.image_ops import (
    decode_image_bytes,
    decode_mask_bytes,
    encode_jpeg_base64,
    encode_png_base64,
)
from passport_matte.services.segmenter import MediaPipeSelfieSegmenter, StaticMaskModel
from passport_matte.services.session import SegmentationSession

LOG = logging.getLogger("passport_matte.api")

app = FastAPI(title="Passport Matte Studio", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

segmenter = MediaPipeSelfieSegmenter()


class _SessionStore:
    def __init__(self, max_sessions: int):
        self._max_sessions = max(1, max_sessions)
        self._sessions: OrderedDict[str, SegmentationSession] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: SegmentationSession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
            while len(self._sessions) > self._max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                LOG.info("session_evicted session=%s", evicted)
        return session_id

    def get(self, session_id: str) -> SegmentationSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


MAX_INFLIGHT = max(1, int(os.getenv("PASSPORT_MATTE_MAX_INFLIGHT", "3")))
MAX_SESSIONS = max(1, int(os.getenv("PASSPORT_MATTE_MAX_SESSIONS", "32")))
MAX_UPLOAD_MB = max(1.0, float(os.getenv("PASSPORT_MATTE_MAX_UPLOAD_MB", "20")))
MAX_UPLOAD_BYTES = int(MAX_UPLOAD_MB * 1024 * 1024)
UPLOAD_READ_CHUNK_BYTES = max(64 * 1024, int(os.getenv("PASSPORT_MATTE_UPLOAD_CHUNK_BYTES", str(1024 * 1024))))

SESSIONS = _SessionStore(max_sessions=MAX_SESSIONS)
INFLIGHT_GUARD = threading.BoundedSemaphore(MAX_INFLIGHT)


def _content_length_exceeds_limit(request: Request, max_bytes: int) -> bool:
    header = request.headers.get("content-length")
    if not header:
        return False
    try:
        return int(header) > max_bytes
    except ValueError:
        return False


async def _read_upload_with_limit(upload: UploadFile, max_bytes: int, chunk_size: int) -> bytes:
    chunks = bytearray()
    total_bytes = 0
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        total_bytes += len(chunk)
        if total_bytes > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Uploaded file is too large. Hard limit is {MAX_UPLOAD_MB:.0f}MB.",
            )
        chunks.extend(chunk)
    return bytes(chunks)


def _encode_result(result: CompositeResult, output_format: OutputFormat) -> tuple[str, str]:
    if output_format == "jpeg":
        return encode_jpeg_base64(result.rgba), "image/jpeg"
    return encode_png_base64(result.rgba), "image/png"


def _session_response(
    session_id: str,
    session: SegmentationSession,
    result: CompositeResult,
    output_format: OutputFormat,
) -> SessionResponse:
    image_b64, mime = _encode_result(result, output_format)
    return SessionResponse(
        session_id=session_id,
        width=result.width,
        height=result.height,
        state=session.state.value,
        background_color=result.background_color,
        image_base64=image_b64,
        image_mime=mime,
    )


@app.get("/api/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "segmentation_model_ready": segmenter.ready,
        "sessions": len(SESSIONS),
        "limits": {
            "max_inflight": MAX_INFLIGHT,
            "max_sessions": MAX_SESSIONS,
            "max_upload_mb": MAX_UPLOAD_MB,
        },
    }


@app.get("/api/backgrounds", response_model=list[BackgroundPresetInfo])
def backgrounds() -> list[BackgroundPresetInfo]:
    return [BackgroundPresetInfo(name=preset.name, color=preset.color) for preset in list_background_presets()]


@app.post("/api/sessions", response_model=SessionResponse)
async def create_session(
    request: Request,
    photo: UploadFile = File(...),
    mask: UploadFile | None = File(None),
    background_color: str = Form(""),
    output_format: OutputFormat = Form("png"),
) -> SessionResponse:
    if not INFLIGHT_GUARD.acquire(blocking=False):
        raise HTTPException(
            status_code=429,
            detail="Server is busy processing other requests. Please retry shortly.",
            headers={"Retry-After": "5"},
        )

    try:
        if _content_length_exceeds_limit(request, MAX_UPLOAD_BYTES):
            raise HTTPException(
                status_code=413,
                detail=f"Request body is too large. Hard limit is {MAX_UPLOAD_MB:.0f}MB.",
            )
        if photo.content_type is None or not photo.content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="Please upload a valid image file.")

        file_bytes = await _read_upload_with_limit(photo, MAX_UPLOAD_BYTES, UPLOAD_READ_CHUNK_BYTES)
        if not file_bytes:
            raise HTTPException(status_code=400, detail="Uploaded image is empty.")
        source = decode_image_bytes(file_bytes)

        model = segmenter
        if mask is not None and mask.filename:
            mask_bytes = await _read_upload_with_limit(mask, MAX_UPLOAD_BYTES, UPLOAD_READ_CHUNK_BYTES)
            if not mask_bytes:
                raise HTTPException(status_code=400, detail="Uploaded mask is empty.")
            model = StaticMaskModel(decode_mask_bytes(mask_bytes))

        session = SegmentationSession(
            model=model,
            background=background_color or load_matte_settings().default_background,
        )
        future = session.submit(source)
        if not future.done():
            raise HTTPException(status_code=503, detail="Segmentation did not complete.")
        result = future.result()
    except HTTPException:
        raise
    except ModelUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover
        LOG.exception("session_failed filename=%s", photo.filename or "upload.jpg")
        raise HTTPException(status_code=500, detail="Internal error") from exc
    finally:
        await photo.close()
        if mask is not None:
            await mask.close()
        INFLIGHT_GUARD.release()

    session_id = SESSIONS.add(session)
    LOG.info("session_created session=%s size=%sx%s", session_id, result.width, result.height)
    return _session_response(session_id, session, result, output_format)


@app.post("/api/sessions/{session_id}/background", response_model=SessionResponse)
def change_background(
    session_id: str,
    background_color: str = Form(...),
    output_format: OutputFormat = Form("png"),
) -> SessionResponse:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    result = session.change_background(background_color)
    if result is None:
        raise HTTPException(status_code=409, detail="No matte available for this session yet.")
    return _session_response(session_id, session, result, output_format)


@app.delete("/api/sessions/{session_id}")
def delete_session(session_id: str) -> dict[str, Any]:
    if not SESSIONS.discard(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}
