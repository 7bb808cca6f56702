from io import BytesIO

import pytest
from PIL import Image, ImageDraw

from bitmap_loader import BitmapLoad, decode_bitmap
from canvas_controller import CanvasController


def _png_bytes(size=(100, 100), color=(255, 0, 0, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class ManualLoader:
    """Loader stand-in whose handles the test settles by hand."""

    def __init__(self):
        self.handles = []

    def load(self, source):
        handle = BitmapLoad(str(source))
        self.handles.append(handle)
        return handle


@pytest.fixture
def png_bytes():
    return _png_bytes


@pytest.fixture
def bordered_frame():
    """Transparent-centered frame with a solid blue border."""

    def build(size=(40, 40), border=4) -> Image.Image:
        frame = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(frame)
        w, h = size
        for i in range(border):
            draw.rectangle((i, i, w - 1 - i, h - 1 - i), outline=(0, 0, 255, 255))
        return frame

    return build


@pytest.fixture
def settled_load():
    def build(data: bytes, source: str = "local.png", origin_clean: bool = True) -> BitmapLoad:
        handle = BitmapLoad(source)
        handle.resolve(decode_bitmap(data, source, origin_clean))
        return handle

    return build


@pytest.fixture
def loader():
    return ManualLoader()


@pytest.fixture
def controller(loader):
    return CanvasController(loader=loader)
