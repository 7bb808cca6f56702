# main.py

import argparse
import sys
from pathlib import Path

from canvas_controller import CanvasController
from exporter import save_export
from frame_sources import find_local_frame, list_local_frames


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Composite a photo beneath a frame overlay and export a PNG.",
    )
    parser.add_argument("--photo", help="photo file, data URL or https URL")
    parser.add_argument(
        "--frame",
        help="frame file, data URL, https URL, or the name of a frame under FRAMES_DIR",
    )
    parser.add_argument("--list-frames", action="store_true", help="list frames under FRAMES_DIR and exit")
    parser.add_argument(
        "--no-default-frame",
        action="store_true",
        help="do not fetch DEFAULT_FRAME_URL when --frame is not given",
    )
    parser.add_argument("--offset-x", type=float, default=0.0)
    parser.add_argument("--offset-y", type=float, default=0.0)
    parser.add_argument("--scale", type=float, default=1.0)
    parser.add_argument("--rotation", type=float, default=0.0)
    parser.add_argument("--caption", action="store_true", help="print a Gemini caption suggestion")
    parser.add_argument("--out", help="output PNG path (default: media/<EXPORT_FILENAME>)")
    return parser.parse_args(argv)


def resolve_frame(value: str) -> str:
    """URLs and existing paths pass through; anything else is a bundled frame name."""
    if value.startswith(("http://", "https://", "data:")) or Path(value).exists():
        return value
    return str(find_local_frame(value))


def main(argv=None) -> int:
    args = _parse_args(argv)

    if args.list_frames:
        frames = list_local_frames()
        if not frames:
            print("[main] No local frames found")
        for frame in frames:
            print(frame.name)
        return 0

    frame_source = None
    if args.frame:
        try:
            frame_source = resolve_frame(args.frame)
        except FileNotFoundError as e:
            print(f"[main] {e}")
            return 1

    controller = CanvasController()
    try:
        return _run(controller, args, frame_source)
    finally:
        controller.close()


def _run(controller: CanvasController, args: argparse.Namespace, frame_source) -> int:
    if frame_source:
        controller.load_frame(frame_source)
    elif not args.no_default_frame:
        controller.load_default_frame()

    if args.photo:
        controller.load_photo(args.photo)

    controller.loader.dispatch_completions(wait_for_pending=True)

    for advisory in (controller.frame_error, controller.photo_error):
        if advisory:
            print(f"[main] {advisory}")

    # Transform last: a finished photo load resets it.
    controller.set_offset(args.offset_x, args.offset_y)
    controller.set_scale(args.scale)
    controller.set_rotation(args.rotation)

    if args.caption:
        print(f"[main] Caption: {controller.suggest_caption()}")

    result = controller.export()
    if not result.ok:
        print(f"[main] {result.message}")
        return 1

    out_path = save_export(result.data, args.out)
    print(f"[main] Saved {controller.canvas.width}x{controller.canvas.height} image to: {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
