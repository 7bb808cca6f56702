"""
Global configuration for the Photo Frame Studio project.

Loads secrets from .env (GEMINI_API_KEY, DEFAULT_FRAME_URL, ...),
and defines paths used across the app.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


BASE_DIR = Path(__file__).resolve().parent
MEDIA_DIR = BASE_DIR / "media"
MEDIA_DIR.mkdir(exist_ok=True)


GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
CAPTION_MODEL_ID = os.getenv("CAPTION_MODEL_ID", "gemini-2.5-flash")


# ----------------------------
# Canvas
# ----------------------------

# Long edge of the output canvas, in pixels.
MAX_CANVAS_DIM = int(os.getenv("MAX_CANVAS_DIM", "1080"))


# ----------------------------
# Frame overlay assets
# ----------------------------
# Local frames can be dropped under ./assets/frames/.

FRAMES_DIR = Path(os.getenv("FRAMES_DIR", str(BASE_DIR / "assets" / "frames")))

# lh3.googleusercontent.com serves the right CORS headers for export.
DEFAULT_FRAME_URL = os.getenv(
    "DEFAULT_FRAME_URL",
    "https://lh3.googleusercontent.com/d/1VMg7JXFIEZwwKiIWA_DUS4Xobj3-6ART",
)


# ----------------------------
# Loading / export
# ----------------------------

# Access-Control-Allow-Origin value a remote source must send to be exportable.
ALLOWED_ORIGIN = os.getenv("ALLOWED_ORIGIN", "*")

# Sent as the Origin header on remote fetches; a host echoing it back is readable too.
APP_ORIGIN = os.getenv("APP_ORIGIN", "http://localhost")

LOADER_MAX_WORKERS = int(os.getenv("LOADER_MAX_WORKERS", "4"))

EXPORT_FILENAME = os.getenv("EXPORT_FILENAME", "framed-masterpiece.png")
