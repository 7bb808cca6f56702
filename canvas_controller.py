from __future__ import annotations

import math
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image

from bitmap_loader import Bitmap, BitmapLoad, BitmapLoader, LoadState, Source
from caption_ai import EMPTY_CAPTION, generate_caption_for_photo
from compositor import FrameLayerCache, PhotoLayerCache, render_composite
from config import MAX_CANVAS_DIM
from exporter import EXPORT_BLOCKED_MESSAGE, ExportBlockedError, ExportResult, export_png
from frame_sources import default_frame_source
from photo_state import (
    ROTATION_RANGE,
    SCALE_RANGE,
    CanvasDimensions,
    FrameDescriptor,
    PhotoTransform,
)

PHOTO_LOAD_FAILED = "Failed to load photo. Try a different image or upload a local file."
FRAME_LOAD_FAILED = "Failed to load frame. Try a different image or upload a local file."
DEFAULT_FRAME_FAILED = (
    "Failed to load default frame. CORS restrictions may apply. "
    "Try uploading it manually."
)

Point = Tuple[float, float]


def _truncate(value: float) -> int:
    # Canvas sizes truncate like an HTML canvas assignment; round off float noise first.
    return max(1, int(round(value, 6)))


def canvas_size_for_frame(
    width: Optional[int],
    height: Optional[int],
    max_dim: int = MAX_CANVAS_DIM,
) -> CanvasDimensions:
    """
    Fit the frame's aspect ratio into max_dim on the long edge.
    Square max_dim x max_dim when the frame size is unknown.
    """
    if not width or not height:
        return CanvasDimensions(max_dim, max_dim)

    ratio = width / height
    if width > height:
        return CanvasDimensions(max_dim, _truncate(max_dim / ratio))
    return CanvasDimensions(_truncate(max_dim * ratio), max_dim)


def _slider_value(value, value_range) -> Optional[float]:
    """Clamp to [min, max] and snap to step, like a range input. None if unusable."""
    lo, hi, step = value_range
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None

    number = min(max(number, lo), hi)
    snapped = lo + round((number - lo) / step) * step
    return round(min(max(snapped, lo), hi), 10)


class DragState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


class CanvasController:
    """
    Owns the photo transform, the frame choice and the canvas size.

    Every state change re-renders through the compositor and hands the
    new surface to redraw listeners. Load completions arrive through
    BitmapLoad handles; the newest completion of each kind wins.
    """

    def __init__(
        self,
        loader: Optional[BitmapLoader] = None,
        max_canvas_dim: int = MAX_CANVAS_DIM,
    ):
        self._owns_loader = loader is None
        self.loader = loader or BitmapLoader()
        self.max_canvas_dim = max_canvas_dim

        self.transform = PhotoTransform()
        self.frame = FrameDescriptor()
        self.canvas = canvas_size_for_frame(None, None, max_canvas_dim)

        self.photo_bitmap: Optional[Bitmap] = None
        self.frame_bitmap: Optional[Bitmap] = None

        self.photo_error: Optional[str] = None
        self.frame_error: Optional[str] = None

        self.drag_state = DragState.IDLE
        self._drag_origin: Point = (0.0, 0.0)
        self.display_width: Optional[float] = None
        self.display_height: Optional[float] = None

        self.surface: Optional[Image.Image] = None
        self._frame_cache = FrameLayerCache()
        self._photo_cache = PhotoLayerCache()
        self._listeners: List[Callable[[Image.Image], None]] = []

        self.redraw()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def add_redraw_listener(self, fn: Callable[[Image.Image], None]) -> None:
        self._listeners.append(fn)

    def render(self) -> Image.Image:
        return render_composite(
            self.canvas,
            self.transform,
            self.photo_bitmap.image if self.photo_bitmap else None,
            self.frame_bitmap.image if self.frame_bitmap else None,
            frame_cache=self._frame_cache,
            photo_cache=self._photo_cache,
        )

    def redraw(self) -> Image.Image:
        self.surface = self.render()
        for fn in self._listeners:
            fn(self.surface)
        return self.surface

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_photo(self, source: Source) -> BitmapLoad:
        handle = self.loader.load(source)
        self.watch_photo_load(handle)
        return handle

    def load_frame(self, source: Source) -> BitmapLoad:
        handle = self.loader.load(source)
        self.watch_frame_load(handle)
        return handle

    def load_default_frame(self) -> Optional[BitmapLoad]:
        source = default_frame_source()
        if source is None:
            return None
        handle = self.loader.load(source)
        self.watch_frame_load(handle, failure_message=DEFAULT_FRAME_FAILED)
        return handle

    def watch_photo_load(self, handle: BitmapLoad) -> None:
        handle.add_done_callback(self._on_photo_settled)

    def watch_frame_load(self, handle: BitmapLoad, failure_message: str = FRAME_LOAD_FAILED) -> None:
        handle.add_done_callback(partial(self._on_frame_settled, failure_message=failure_message))

    def _on_photo_settled(self, handle: BitmapLoad) -> None:
        if handle.state is not LoadState.LOADED:
            # Keep whatever photo is already showing.
            print(f"[controller] Photo load failed: {handle.reason}")
            self.photo_error = PHOTO_LOAD_FAILED
            return

        self.photo_bitmap = handle.bitmap
        self.photo_error = None
        self.transform.reset()
        print(f"[controller] Photo ready: {handle.source}")
        self.redraw()

    def _on_frame_settled(self, handle: BitmapLoad, failure_message: str) -> None:
        if handle.state is not LoadState.LOADED:
            print(f"[controller] Frame load failed: {handle.reason}")
            self.frame_error = failure_message
            return

        bitmap = handle.bitmap
        self._set_frame(
            FrameDescriptor(
                source=handle.source,
                natural_width=bitmap.width,
                natural_height=bitmap.height,
            ),
            bitmap,
        )
        self.frame_error = None
        print(f"[controller] Frame ready: {handle.source} ({bitmap.width}x{bitmap.height})")
        self.redraw()

    def _set_frame(self, frame: FrameDescriptor, bitmap: Optional[Bitmap]) -> None:
        old = self.frame
        self.frame = frame
        self.frame_bitmap = bitmap

        # Only resize on a real dimension change; resizing wipes the surface.
        if (old.natural_width, old.natural_height) != (frame.natural_width, frame.natural_height):
            self.canvas = canvas_size_for_frame(
                frame.natural_width,
                frame.natural_height,
                self.max_canvas_dim,
            )

    def clear_frame(self) -> None:
        self._set_frame(FrameDescriptor(), None)
        self._frame_cache.clear()
        self.redraw()

    # ------------------------------------------------------------------
    # Drag (mouse / touch)
    # ------------------------------------------------------------------

    def set_display_size(self, width: float, height: Optional[float] = None) -> None:
        """Size the surface is currently shown at on screen."""
        self.display_width = width
        self.display_height = height

    @property
    def sensitivity(self) -> Optional[float]:
        if not self.display_width or self.display_width <= 0:
            return None
        return self.canvas.width / self.display_width

    def pointer_down(self, x: float, y: float) -> bool:
        if self.photo_bitmap is None:
            return False
        self.drag_state = DragState.DRAGGING
        self._drag_origin = (x, y)
        return True

    def pointer_move(self, x: float, y: float) -> bool:
        if self.drag_state is not DragState.DRAGGING:
            return False

        sensitivity = self.sensitivity
        if sensitivity is None:
            return False

        start_x, start_y = self._drag_origin
        self.transform.offset_x += (x - start_x) * sensitivity
        self.transform.offset_y += (y - start_y) * sensitivity

        # Incremental: next delta is measured from here.
        self._drag_origin = (x, y)
        self.redraw()
        return True

    def pointer_up(self) -> None:
        self.drag_state = DragState.IDLE

    def pointer_leave(self) -> None:
        if self.drag_state is DragState.DRAGGING:
            self.drag_state = DragState.IDLE

    mouse_down = pointer_down
    mouse_move = pointer_move
    mouse_up = pointer_up
    mouse_leave = pointer_leave

    def touch_start(self, touches: Sequence[Point]) -> bool:
        if not touches:
            return False
        x, y = touches[0]
        return self.pointer_down(x, y)

    def touch_move(self, touches: Sequence[Point]) -> bool:
        if not touches:
            return False
        x, y = touches[0]
        return self.pointer_move(x, y)

    def touch_end(self) -> None:
        self.pointer_up()

    # ------------------------------------------------------------------
    # Direct controls
    # ------------------------------------------------------------------

    def set_scale(self, value) -> float:
        scale = _slider_value(value, SCALE_RANGE)
        if scale is None:
            print(f"[controller] Ignoring scale input {value!r}")
            return self.transform.scale
        self.transform.scale = scale
        self.redraw()
        return scale

    def set_rotation(self, value) -> float:
        rotation = _slider_value(value, ROTATION_RANGE)
        if rotation is None:
            print(f"[controller] Ignoring rotation input {value!r}")
            return self.transform.rotation_degrees
        self.transform.rotation_degrees = rotation
        self.redraw()
        return rotation

    def set_offset(self, x, y) -> Point:
        try:
            new_x, new_y = float(x), float(y)
        except (TypeError, ValueError):
            new_x = new_y = math.nan

        if not (math.isfinite(new_x) and math.isfinite(new_y)):
            print(f"[controller] Ignoring offset input ({x!r}, {y!r})")
        else:
            self.transform.offset_x = new_x
            self.transform.offset_y = new_y
            self.redraw()
        return (self.transform.offset_x, self.transform.offset_y)

    def reset(self) -> None:
        self.transform.reset()
        self.redraw()

    @property
    def scale_percent(self) -> int:
        return round(self.transform.scale * 100)

    @property
    def rotation_label(self) -> str:
        return f"{round(self.transform.rotation_degrees)}°"

    # ------------------------------------------------------------------
    # Export / caption
    # ------------------------------------------------------------------

    def export(self) -> ExportResult:
        try:
            data = export_png(
                self.canvas,
                self.transform,
                self.photo_bitmap,
                self.frame_bitmap,
                frame_cache=self._frame_cache,
                photo_cache=self._photo_cache,
            )
        except ExportBlockedError as e:
            print(f"[controller] Export failed: {e}")
            return ExportResult(message=EXPORT_BLOCKED_MESSAGE)
        return ExportResult(data=data)

    def suggest_caption(self) -> str:
        if self.photo_bitmap is None:
            return EMPTY_CAPTION
        return generate_caption_for_photo(
            self.photo_bitmap.data,
            mime_type=self.photo_bitmap.mime_type,
        )

    def close(self) -> None:
        """Stop background loads started through this controller's own loader."""
        if self._owns_loader:
            self.loader.shutdown()
        self._photo_cache.clear()
        self._frame_cache.clear()
