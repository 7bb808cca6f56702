# frame_sources.py

import time
from pathlib import Path
from typing import List, Optional

from config import DEFAULT_FRAME_URL, FRAMES_DIR

FRAME_SUFFIXES = (".png", ".webp", ".gif", ".jpg", ".jpeg")


def default_frame_source(now_ms: Optional[int] = None) -> Optional[str]:
    """
    URL of the start-up frame, or None when disabled.
    `=s0` asks the host for the original size; `?t=` defeats caching.
    """
    if not DEFAULT_FRAME_URL:
        return None

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    return f"{DEFAULT_FRAME_URL}=s0?t={now_ms}"


def list_local_frames() -> List[Path]:
    if not FRAMES_DIR.is_dir():
        return []
    return sorted(
        p for p in FRAMES_DIR.iterdir()
        if p.is_file() and p.suffix.lower() in FRAME_SUFFIXES
    )


def find_local_frame(name: str) -> Path:
    direct = FRAMES_DIR / name
    if direct.exists():
        return direct

    for frame in list_local_frames():
        if frame.stem == name:
            return frame

    raise FileNotFoundError(f"Frame not found: {direct}")
