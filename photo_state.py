# photo_state.py

from dataclasses import dataclass
from typing import Optional

# Slider ranges: (min, max, step)
SCALE_RANGE = (0.1, 4.0, 0.1)
ROTATION_RANGE = (-180.0, 180.0, 1.0)

INITIAL_OFFSET_X = 0.0
INITIAL_OFFSET_Y = 0.0
INITIAL_SCALE = 1.0
INITIAL_ROTATION = 0.0


@dataclass
class PhotoTransform:
    """
    Translate / rotate / scale applied to the photo layer.

    Offsets are in output-pixel units relative to the canvas center.
    The layer may extend past the canvas edges.
    """

    offset_x: float = INITIAL_OFFSET_X
    offset_y: float = INITIAL_OFFSET_Y
    scale: float = INITIAL_SCALE
    rotation_degrees: float = INITIAL_ROTATION

    def reset(self) -> None:
        self.offset_x = INITIAL_OFFSET_X
        self.offset_y = INITIAL_OFFSET_Y
        self.scale = INITIAL_SCALE
        self.rotation_degrees = INITIAL_ROTATION

    def as_tuple(self):
        return (self.offset_x, self.offset_y, self.scale, self.rotation_degrees)


@dataclass(frozen=True)
class FrameDescriptor:
    """A frame overlay choice. Replaced wholesale, never edited."""

    source: Optional[str] = None
    natural_width: Optional[int] = None
    natural_height: Optional[int] = None


@dataclass(frozen=True)
class CanvasDimensions:
    width: int
    height: int

    @property
    def size(self):
        return (self.width, self.height)
