from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


OutputFormat = Literal["png", "jpeg"]


class BackgroundPresetInfo(BaseModel):
    name: str
    color: str


class SessionResponse(BaseModel):
    session_id: str
    width: int
    height: int
    state: str
    background_color: str
    image_base64: str
    image_mime: str
