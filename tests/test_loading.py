import base64

import pytest
import requests
from PIL import Image, ImageOps

import bitmap_loader
import frame_sources
from bitmap_loader import (
    BitmapLoad,
    BitmapLoader,
    BitmapLoadError,
    LoadState,
    decode_bitmap,
    fetch_url,
    load_bitmap,
    read_source,
)
from canvas_controller import DEFAULT_FRAME_FAILED, CanvasController


class FakeResponse:
    def __init__(self, content=b"", status_code=200, headers=None):
        self.content = content
        self.status_code = status_code
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


def test_handle_settles_once(png_bytes):
    handle = BitmapLoad("a.png")
    seen = []
    handle.add_done_callback(seen.append)

    assert handle.state is LoadState.PENDING
    handle.resolve(decode_bitmap(png_bytes()))

    assert handle.state is LoadState.LOADED
    assert seen == [handle]
    with pytest.raises(RuntimeError):
        handle.fail("late")


def test_callback_added_after_settle_runs_immediately():
    handle = BitmapLoad("a.png")
    handle.fail("boom")

    seen = []
    handle.add_done_callback(seen.append)
    assert seen == [handle]
    assert handle.reason == "boom"
    assert handle.bitmap is None


def test_decode_rejects_garbage():
    with pytest.raises(BitmapLoadError):
        decode_bitmap(b"definitely not an image")


def test_decode_keeps_bytes_and_mime(png_bytes):
    data = png_bytes((30, 20))
    bitmap = decode_bitmap(data, "photo.png")

    assert (bitmap.width, bitmap.height) == (30, 20)
    assert bitmap.image.mode == "RGBA"
    assert bitmap.data == data
    assert bitmap.mime_type == "image/png"


def test_read_source_accepts_data_url(png_bytes):
    data = png_bytes()
    url = "data:image/png;base64," + base64.b64encode(data).decode("ascii")

    assert read_source(url) == (data, True)


def test_read_source_missing_file(tmp_path):
    with pytest.raises(BitmapLoadError, match="not found"):
        read_source(tmp_path / "nope.png")


def test_load_bitmap_from_file(tmp_path, png_bytes):
    path = tmp_path / "frame.png"
    path.write_bytes(png_bytes((64, 32)))

    bitmap = load_bitmap(path)

    assert bitmap.origin_clean
    assert (bitmap.width, bitmap.height) == (64, 32)


def test_background_file_load_failure_is_reported(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"garbage")
    loader = BitmapLoader(max_workers=1)
    try:
        handle = loader.load(path)
        loader.dispatch_completions(wait_for_pending=True)
    finally:
        loader.shutdown()

    assert handle.state is LoadState.FAILED
    assert "decode" in handle.reason


def test_fetch_url_with_cors_header(monkeypatch, png_bytes):
    data = png_bytes()
    monkeypatch.setattr(
        bitmap_loader.requests,
        "get",
        lambda url, **kwargs: FakeResponse(data, headers={"Access-Control-Allow-Origin": "*"}),
    )

    assert fetch_url("https://example.com/frame.png") == (data, True)


def test_fetch_url_without_cors_header_is_tainted(monkeypatch, png_bytes):
    monkeypatch.setattr(bitmap_loader.requests, "get", lambda url, **kwargs: FakeResponse(png_bytes()))

    _, origin_clean = fetch_url("https://example.com/frame.png")
    assert origin_clean is False


def test_fetch_url_http_error(monkeypatch):
    monkeypatch.setattr(bitmap_loader.requests, "get", lambda url, **kwargs: FakeResponse(status_code=404))

    with pytest.raises(BitmapLoadError, match="404"):
        fetch_url("https://example.com/missing.png")


def test_background_load_settles_on_dispatch(png_bytes):
    loader = BitmapLoader(max_workers=2)
    try:
        good = loader.load(png_bytes())
        bad = loader.load(b"junk")

        # Work may already be done, but handles only settle on dispatch.
        assert good.state is LoadState.PENDING
        assert bad.state is LoadState.PENDING

        assert loader.dispatch_completions(wait_for_pending=True) == 2
        assert good.state is LoadState.LOADED
        assert bad.state is LoadState.FAILED
        assert loader.dispatch_completions() == 0
    finally:
        loader.shutdown()


def test_last_completed_photo_wins(controller, loader, png_bytes):
    first = controller.load_photo("a.png")
    second = controller.load_photo("b.png")

    second.resolve(decode_bitmap(png_bytes((10, 10)), "b.png"))
    first.resolve(decode_bitmap(png_bytes((20, 20)), "a.png"))

    assert controller.photo_bitmap is first.bitmap


def test_failed_second_photo_keeps_first(controller, loader, png_bytes):
    first = controller.load_photo("a.png")
    first.resolve(decode_bitmap(png_bytes(), "a.png"))
    before = controller.surface.tobytes()

    second = controller.load_photo("b.png")
    second.fail("cannot identify image file")

    assert controller.photo_bitmap is first.bitmap
    assert controller.render().tobytes() == before


def test_pending_load_does_not_touch_state(controller, loader):
    controller.load_frame("frame.png")

    assert controller.frame_bitmap is None
    assert controller.canvas.size == (1080, 1080)


def test_default_frame_uses_cache_busting_url(monkeypatch):
    monkeypatch.setattr(frame_sources, "DEFAULT_FRAME_URL", "https://example.com/d/frame")

    assert frame_sources.default_frame_source(now_ms=1234) == "https://example.com/d/frame=s0?t=1234"


def test_default_frame_disabled(monkeypatch, controller, loader):
    monkeypatch.setattr(frame_sources, "DEFAULT_FRAME_URL", "")

    assert controller.load_default_frame() is None
    assert loader.handles == []


def test_default_frame_failure_advisory(monkeypatch, controller, loader):
    monkeypatch.setattr(frame_sources, "DEFAULT_FRAME_URL", "https://example.com/d/frame")

    handle = controller.load_default_frame()
    handle.fail("connection refused")

    assert controller.frame_error == DEFAULT_FRAME_FAILED
    assert controller.frame_bitmap is None


def test_frame_error_clears_on_success(controller, loader, png_bytes):
    controller.load_frame("bad.png").fail("nope")
    assert controller.frame_error is not None

    controller.load_frame("good.png").resolve(decode_bitmap(png_bytes(), "good.png"))
    assert controller.frame_error is None


def test_find_local_frame(monkeypatch, tmp_path, png_bytes):
    (tmp_path / "reunion.png").write_bytes(png_bytes())
    (tmp_path / "notes.txt").write_text("not a frame")
    monkeypatch.setattr(frame_sources, "FRAMES_DIR", tmp_path)

    assert frame_sources.list_local_frames() == [tmp_path / "reunion.png"]
    assert frame_sources.find_local_frame("reunion") == tmp_path / "reunion.png"
    with pytest.raises(FileNotFoundError):
        frame_sources.find_local_frame("missing")


def _cors_echo_server(data):
    """Fake host that only sends Access-Control-Allow-Origin for CORS requests."""
    seen = []

    def get(url, headers=None, **kwargs):
        seen.append(headers or {})
        origin = (headers or {}).get("Origin")
        if origin is None:
            return FakeResponse(data)
        return FakeResponse(data, headers={"Access-Control-Allow-Origin": origin})

    return get, seen


def test_fetch_url_sends_origin_and_accepts_echo(monkeypatch, png_bytes):
    data = png_bytes()
    get, seen = _cors_echo_server(data)
    monkeypatch.setattr(bitmap_loader.requests, "get", get)
    monkeypatch.setattr(bitmap_loader, "APP_ORIGIN", "https://studio.example")

    assert fetch_url("https://example.com/frame.png") == (data, True)
    assert seen == [{"Origin": "https://studio.example"}]


def test_fetch_url_other_origin_is_tainted(monkeypatch, png_bytes):
    monkeypatch.setattr(
        bitmap_loader.requests,
        "get",
        lambda url, **kwargs: FakeResponse(
            png_bytes(), headers={"Access-Control-Allow-Origin": "https://someone-else.example"}
        ),
    )

    _, origin_clean = fetch_url("https://example.com/frame.png")
    assert origin_clean is False


def test_decompression_bomb_is_a_load_error(monkeypatch, png_bytes):
    data = png_bytes((100, 100))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    with pytest.raises(BitmapLoadError, match="decode"):
        decode_bitmap(data, "huge.png")


def test_broken_exif_is_a_load_error(monkeypatch, png_bytes):
    def broken_transpose(image):
        raise SyntaxError("corrupt EXIF orientation")

    monkeypatch.setattr(ImageOps, "exif_transpose", broken_transpose)

    with pytest.raises(BitmapLoadError, match="corrupt EXIF"):
        decode_bitmap(png_bytes(), "photo.jpg")


def test_last_completed_frame_wins(controller, loader, png_bytes):
    wide = controller.load_frame("wide.png")
    tall = controller.load_frame("tall.png")

    tall.resolve(decode_bitmap(png_bytes((900, 1800), (0, 0, 0, 0)), "tall.png"))
    assert controller.canvas.size == (540, 1080)

    wide.resolve(decode_bitmap(png_bytes((1600, 1200), (0, 0, 0, 0)), "wide.png"))

    assert controller.frame_bitmap is wide.bitmap
    assert controller.frame.source == "wide.png"
    assert (controller.frame.natural_width, controller.frame.natural_height) == (1600, 1200)
    assert controller.canvas.size == (1080, 810)
    assert controller.surface.size == (1080, 810)


def test_shutdown_loader_refuses_new_loads(png_bytes):
    loader = BitmapLoader(max_workers=1)
    loader.load(png_bytes())
    loader.shutdown()

    assert loader.closed
    with pytest.raises(RuntimeError):
        loader.load(png_bytes())


def test_controller_close_stops_its_own_loader():
    controller = CanvasController()
    controller.close()

    assert controller.loader.closed


def test_controller_close_leaves_injected_loader_running(png_bytes):
    shared = BitmapLoader(max_workers=1)
    try:
        CanvasController(loader=shared).close()

        assert not shared.closed
        handle = shared.load(png_bytes())
        shared.dispatch_completions(wait_for_pending=True)
        assert handle.state is LoadState.LOADED
    finally:
        shared.shutdown()
