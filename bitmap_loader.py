from __future__ import annotations

import base64
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import requests
from PIL import Image, ImageOps

from config import ALLOWED_ORIGIN, APP_ORIGIN, LOADER_MAX_WORKERS

Source = Union[bytes, bytearray, str, Path]


class BitmapLoadError(RuntimeError):
    pass


class LoadState(Enum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class Bitmap:
    """Decoded, read-only pixels plus the bytes they came from."""

    image: Image.Image
    source: str
    data: bytes
    mime_type: str = "image/png"
    origin_clean: bool = True

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


def describe_source(source: Source) -> str:
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    text = str(source)
    if text.startswith("data:"):
        return text[:32] + "..."
    return text


def _is_remote(source: Source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def _origin_allows_read(response: requests.Response) -> bool:
    allow = response.headers.get("Access-Control-Allow-Origin")
    if not allow:
        return False
    allow = allow.strip()
    return allow in ("*", ALLOWED_ORIGIN, APP_ORIGIN)


def fetch_url(url: str) -> Tuple[bytes, bool]:
    """
    Download a remote image.
    Returns (bytes, origin_clean). Sends an Origin header like an anonymous
    cross-origin image request, since many hosts only answer CORS requests
    with Access-Control-Allow-Origin. No timeout: a hung fetch stays pending.
    """
    try:
        response = requests.get(url, headers={"Origin": APP_ORIGIN})
        response.raise_for_status()
    except requests.RequestException as e:
        raise BitmapLoadError(f"Could not fetch {url}: {e}") from e

    return response.content, _origin_allows_read(response)


def read_source(source: Source) -> Tuple[bytes, bool]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), True

    if _is_remote(source):
        return fetch_url(source)

    if isinstance(source, str) and source.startswith("data:"):
        # data:image/png;base64,<payload>
        header, _, payload = source.partition(",")
        if not header.endswith(";base64") or not payload:
            raise BitmapLoadError("Unsupported data URL (expected base64 payload)")
        try:
            return base64.b64decode(payload, validate=True), True
        except ValueError as e:
            raise BitmapLoadError(f"Malformed base64 data URL: {e}") from e

    path = Path(source)
    if not path.exists():
        raise BitmapLoadError(f"Image not found: {path}")
    try:
        return path.read_bytes(), True
    except OSError as e:
        raise BitmapLoadError(f"Could not read {path}: {e}") from e


def decode_bitmap(data: bytes, source: str = "<bytes>", origin_clean: bool = True) -> Bitmap:
    try:
        img = Image.open(BytesIO(data))
        img.load()
        mime_type = Image.MIME.get(img.format or "", "image/png")

        # Browsers display photos upright; do the same.
        img = ImageOps.exif_transpose(img).convert("RGBA")
    except Exception as e:
        # Bad headers, decompression bombs and broken EXIF all surface as a load failure.
        raise BitmapLoadError(f"Could not decode image from {source}: {e}") from e

    return Bitmap(
        image=img,
        source=source,
        data=data,
        mime_type=mime_type,
        origin_clean=origin_clean,
    )


def load_bitmap(source: Source) -> Bitmap:
    data, origin_clean = read_source(source)
    return decode_bitmap(data, describe_source(source), origin_clean)


class BitmapLoad:
    """
    Handle for one load attempt: PENDING until settled, then
    LOADED (bitmap set) or FAILED (reason set). Settles exactly once.
    """

    def __init__(self, source: str):
        self.source = source
        self.state = LoadState.PENDING
        self.bitmap: Optional[Bitmap] = None
        self.reason: Optional[str] = None
        self._callbacks: List[Callable[["BitmapLoad"], None]] = []

    def __repr__(self) -> str:
        return f"<BitmapLoad {self.state.value} {self.source}>"

    @property
    def done(self) -> bool:
        return self.state is not LoadState.PENDING

    def resolve(self, bitmap: Bitmap) -> None:
        self._settle(LoadState.LOADED, bitmap=bitmap)

    def fail(self, reason: str) -> None:
        self._settle(LoadState.FAILED, reason=reason)

    def add_done_callback(self, fn: Callable[["BitmapLoad"], None]) -> None:
        if self.done:
            fn(self)
        else:
            self._callbacks.append(fn)

    def _settle(self, state: LoadState, bitmap=None, reason=None) -> None:
        if self.done:
            raise RuntimeError(f"Load already settled: {self!r}")
        self.state = state
        self.bitmap = bitmap
        self.reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn(self)


class BitmapLoader:
    """
    Fetches and decodes on worker threads. Results are queued and only
    applied to their handles by dispatch_completions(), which runs on the
    caller's (UI) thread in completion order.
    """

    def __init__(self, max_workers: int = LOADER_MAX_WORKERS):
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._completed: "queue.Queue[Tuple[BitmapLoad, Optional[Bitmap], Optional[str]]]" = queue.Queue()
        self._in_flight = set()
        self._lock = threading.Lock()
        self._closed = False

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="bitmap-loader",
            )
        return self._executor

    def load(self, source: Source) -> BitmapLoad:
        if self._closed:
            raise RuntimeError("BitmapLoader is shut down")
        handle = BitmapLoad(describe_source(source))
        future = self._get_executor().submit(self._run, handle, source)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)
        print(f"[loader] Loading {handle.source}")
        return handle

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch_completions(self, wait_for_pending: bool = False) -> int:
        """Settle handles whose work has finished. Returns how many."""
        if wait_for_pending:
            with self._lock:
                futures = list(self._in_flight)
            wait(futures)

        count = 0
        while True:
            try:
                handle, bitmap, reason = self._completed.get_nowait()
            except queue.Empty:
                break
            if bitmap is not None:
                handle.resolve(bitmap)
            else:
                handle.fail(reason or "unknown error")
            count += 1
        return count

    def shutdown(self) -> None:
        """Drop queued loads; a fetch already running finishes in the background."""
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _run(self, handle: BitmapLoad, source: Source) -> None:
        try:
            bitmap = load_bitmap(source)
        except Exception as e:
            print(f"[loader] Failed {handle.source}: {e}")
            self._completed.put((handle, None, str(e)))
            return
        print(f"[loader] Loaded {handle.source} ({bitmap.width}x{bitmap.height})")
        self._completed.put((handle, bitmap, None))

    def _forget(self, future) -> None:
        with self._lock:
            self._in_flight.discard(future)
