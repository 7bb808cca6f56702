# compositor.py

import math
from typing import Optional, Tuple

from PIL import Image

from photo_state import CanvasDimensions, PhotoTransform

BACKGROUND = (255, 255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)

# Extra room, as a fraction of the canvas, kept around the visible part of a
# cached photo layer so short drags don't rebuild it.
LAYER_MARGIN = 0.5

Affine = Tuple[float, float, float, float, float, float]
Box = Tuple[int, int, int, int]


def _check_scale(scale: float) -> None:
    if not (scale > 0 and math.isfinite(scale)):
        raise ValueError(f"scale must be positive, got {scale!r}")


def _inverse_affine(
    center: Tuple[float, float],
    scale: float,
    rotation_degrees: float,
    photo_size: Tuple[int, int],
) -> Affine:
    """
    Inverse mapping (output -> photo pixel) for Image.transform.

    Forward order is translate to `center`, rotate (clockwise-positive,
    y points down), then scale; the photo's own center lands on `center`.
    """
    _check_scale(scale)

    theta = math.radians(rotation_degrees)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)

    cx, cy = center
    half_w = photo_size[0] / 2
    half_h = photo_size[1] / 2

    a = cos_t / scale
    b = sin_t / scale
    d = -sin_t / scale
    e = cos_t / scale
    c = half_w - (a * cx + b * cy)
    f = half_h - (d * cx + e * cy)
    return (a, b, c, d, e, f)


def _snap(value: float) -> int:
    return math.floor(value + 0.5)


def _intersect(a: Box, b: Box) -> Optional[Box]:
    box = (max(a[0], b[0]), max(a[1], b[1]), min(a[2], b[2]), min(a[3], b[3]))
    if box[0] >= box[2] or box[1] >= box[3]:
        return None
    return box


def _contains(outer: Optional[Box], inner: Box) -> bool:
    if outer is None:
        return False
    return (
        outer[0] <= inner[0]
        and outer[1] <= inner[1]
        and outer[2] >= inner[2]
        and outer[3] >= inner[3]
    )


def photo_bounds(dims: CanvasDimensions, transform: PhotoTransform, photo_size: Tuple[int, int]) -> Box:
    """
    Canvas-pixel box covered by the scaled, rotated photo at zero offset.
    One pixel of padding leaves room for bilinear edges.
    """
    _check_scale(transform.scale)

    theta = math.radians(transform.rotation_degrees)
    cos_t = abs(math.cos(theta))
    sin_t = abs(math.sin(theta))
    w, h = photo_size

    ex = (w * cos_t + h * sin_t) * transform.scale / 2 + 1
    ey = (w * sin_t + h * cos_t) * transform.scale / 2 + 1
    cx = dims.width / 2
    cy = dims.height / 2
    return (math.floor(cx - ex), math.floor(cy - ey), math.ceil(cx + ex), math.ceil(cy + ey))


def _build_layer(
    photo: Image.Image,
    dims: CanvasDimensions,
    transform: PhotoTransform,
    window: Box,
) -> Image.Image:
    """Render the zero-offset photo into the canvas region `window`."""
    if photo.mode != "RGBA":
        photo = photo.convert("RGBA")

    x0, y0, x1, y1 = window
    center = (dims.width / 2 - x0, dims.height / 2 - y0)
    data = _inverse_affine(center, transform.scale, transform.rotation_degrees, photo.size)
    return photo.transform(
        (x1 - x0, y1 - y0),
        Image.AFFINE,
        data,
        resample=Image.BILINEAR,
        fillcolor=TRANSPARENT,
    )


class PhotoLayerCache:
    """
    Keeps the scaled, rotated photo so a drag only re-composites it.
    Rebuilt when photo, canvas size, scale or rotation change, or when the
    drag moves past the cached window.
    """

    def __init__(self, margin: float = LAYER_MARGIN):
        self.margin = margin
        self.builds = 0
        self._photo: Optional[Image.Image] = None
        self._key = None
        self._window: Optional[Box] = None
        self._layer: Optional[Image.Image] = None

    def get(
        self,
        photo: Image.Image,
        dims: CanvasDimensions,
        transform: PhotoTransform,
        bounds: Box,
        needed: Box,
    ) -> Tuple[Image.Image, Box]:
        key = (dims.size, transform.scale, transform.rotation_degrees)
        if photo is not self._photo or key != self._key or not _contains(self._window, needed):
            mx = int(dims.width * self.margin)
            my = int(dims.height * self.margin)
            grown = (needed[0] - mx, needed[1] - my, needed[2] + mx, needed[3] + my)
            self._window = _intersect(grown, bounds)
            self._layer = _build_layer(photo, dims, transform, self._window)
            self._photo = photo
            self._key = key
            self.builds += 1
        return self._layer, self._window

    def clear(self) -> None:
        self._photo = None
        self._key = None
        self._window = None
        self._layer = None


def _composite_photo(
    card: Image.Image,
    dims: CanvasDimensions,
    transform: PhotoTransform,
    photo: Image.Image,
    photo_cache: Optional[PhotoLayerCache],
) -> None:
    # Offsets land on whole canvas pixels.
    ox = _snap(transform.offset_x)
    oy = _snap(transform.offset_y)

    bounds = photo_bounds(dims, transform, photo.size)
    needed = _intersect(bounds, (-ox, -oy, dims.width - ox, dims.height - oy))
    if needed is None:
        return

    if photo_cache is not None:
        layer, window = photo_cache.get(photo, dims, transform, bounds, needed)
    else:
        window = needed
        layer = _build_layer(photo, dims, transform, window)

    sx = needed[0] - window[0]
    sy = needed[1] - window[1]
    card.alpha_composite(
        layer,
        dest=(needed[0] + ox, needed[1] + oy),
        source=(sx, sy, sx + needed[2] - needed[0], sy + needed[3] - needed[1]),
    )


def stretch_frame(frame: Image.Image, dims: CanvasDimensions) -> Image.Image:
    """Frame always fills the whole canvas, whatever its own aspect ratio."""
    if frame.mode != "RGBA":
        frame = frame.convert("RGBA")
    if frame.size == dims.size:
        return frame
    return frame.resize(dims.size, Image.LANCZOS)


class FrameLayerCache:
    """Keeps the last stretched frame so drags don't resample it every move."""

    def __init__(self):
        self._frame: Optional[Image.Image] = None
        self._size: Optional[Tuple[int, int]] = None
        self._layer: Optional[Image.Image] = None

    def get(self, frame: Image.Image, dims: CanvasDimensions) -> Image.Image:
        if frame is not self._frame or dims.size != self._size:
            self._layer = stretch_frame(frame, dims)
            self._frame = frame
            self._size = dims.size
        return self._layer

    def clear(self) -> None:
        self._frame = None
        self._size = None
        self._layer = None


def render_composite(
    dims: CanvasDimensions,
    transform: PhotoTransform,
    photo: Optional[Image.Image] = None,
    frame: Optional[Image.Image] = None,
    *,
    surface: Optional[Image.Image] = None,
    frame_cache: Optional[FrameLayerCache] = None,
    photo_cache: Optional[PhotoLayerCache] = None,
) -> Image.Image:
    """
    Simple compositing:
    - Opaque white background
    - Photo layer transformed behind, offsets rounded to whole pixels
    - Frame stretched over the whole canvas on top

    Writes into `surface` when given (it must match dims), otherwise
    returns a new RGBA image.
    """
    if surface is not None and surface.size != dims.size:
        raise ValueError(f"surface is {surface.size}, expected {dims.size}")

    card = Image.new("RGBA", dims.size, BACKGROUND)

    if photo is not None:
        _composite_photo(card, dims, transform, photo, photo_cache)

    if frame is not None:
        if frame_cache is not None:
            overlay = frame_cache.get(frame, dims)
        else:
            overlay = stretch_frame(frame, dims)
        card.alpha_composite(overlay)

    if surface is None:
        return card

    surface.paste(card)
    return surface
