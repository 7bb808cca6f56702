from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

from bitmap_loader import Bitmap
from compositor import FrameLayerCache, PhotoLayerCache, render_composite
from config import EXPORT_FILENAME, MEDIA_DIR
from photo_state import CanvasDimensions, PhotoTransform

EXPORT_BLOCKED_MESSAGE = (
    "Could not export image. This usually happens if the frame image is "
    "blocked by cross-origin security rules. Please try uploading the "
    "frame manually."
)


class ExportBlockedError(RuntimeError):
    pass


@dataclass(frozen=True)
class ExportResult:
    data: Optional[bytes] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


def _ensure_readable(bitmap: Optional[Bitmap]) -> None:
    if bitmap is not None and not bitmap.origin_clean:
        raise ExportBlockedError(
            f"Pixels from {bitmap.source} are not readable: "
            "the source sent no matching Access-Control-Allow-Origin header"
        )


def export_png(
    dims: CanvasDimensions,
    transform: PhotoTransform,
    photo: Optional[Bitmap] = None,
    frame: Optional[Bitmap] = None,
    frame_cache: Optional[FrameLayerCache] = None,
    photo_cache: Optional[PhotoLayerCache] = None,
) -> bytes:
    """
    Render the composite and encode it as PNG.
    Raises ExportBlockedError if any drawn bitmap is cross-origin tainted.
    """
    _ensure_readable(photo)
    _ensure_readable(frame)

    card = render_composite(
        dims,
        transform,
        photo.image if photo is not None else None,
        frame.image if frame is not None else None,
        frame_cache=frame_cache,
        photo_cache=photo_cache,
    )

    buf = BytesIO()
    card.convert("RGB").save(buf, format="PNG")
    return buf.getvalue()


def save_export(data: bytes, path: Optional[Union[str, Path]] = None) -> Path:
    out = Path(path) if path is not None else MEDIA_DIR / EXPORT_FILENAME
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    return out
