from __future__ import annotations

import re
from typing import Any

DEFAULT_COLOR = "#FFFFFF"
_HEX_RE = re.compile(r"^#?([0-9A-F]{3}|[0-9A-F]{6})$")


def normalize_hex(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_COLOR
    match = _HEX_RE.match(value.strip().upper())
    if match is None:
        return DEFAULT_COLOR
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(nibble * 2 for nibble in digits)
    return f"#{digits}"


def to_rgb(color: Any) -> tuple[int, int, int]:
    digits = normalize_hex(color)[1:]
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def rgb_to_hex(r: int, g: int, b: int) -> str:
    channels = [max(0, min(255, int(round(c)))) for c in (r, g, b)]
    return "#" + "".join(f"{c:02X}" for c in channels)
