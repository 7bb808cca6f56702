import base64
from typing import Optional, Union

from google import genai
from google.genai import types

from config import CAPTION_MODEL_ID, GEMINI_API_KEY

MISSING_KEY_CAPTION = "Capture the moment!"
EMPTY_CAPTION = "Memories forever"
ERROR_CAPTION = "Beautiful Day"

CAPTION_PROMPT = (
    "Write a very short, catchy, heartwarming or witty caption (max 6 words) "
    "for this photo that would look good on a photo frame. Do not use quotes."
)

_client: Optional[genai.Client] = None


def _get_client() -> genai.Client:
    global _client
    if _client is None:
        _client = genai.Client(api_key=GEMINI_API_KEY)
    return _client


def _guess_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _photo_bytes(photo: Union[bytes, str]) -> bytes:
    if isinstance(photo, (bytes, bytearray)):
        return bytes(photo)

    # Strip a "data:image/...;base64," prefix if present
    payload = photo.split(",", 1)[1] if "," in photo else photo
    return base64.b64decode(payload, validate=True)


def generate_caption_for_photo(
    photo: Union[bytes, str],
    mime_type: Optional[str] = None,
) -> str:
    """
    Ask Gemini for a short caption for the photo.

    Accepts raw image bytes or a base64 string (optionally a data URL).
    Never raises: every failure maps to a fixed fallback caption.
    """
    if not GEMINI_API_KEY:
        print("[caption_ai] API Key is missing. Returning mock response.")
        return MISSING_KEY_CAPTION

    try:
        data = _photo_bytes(photo)
        image_part = types.Part.from_bytes(
            data=data,
            mime_type=mime_type or _guess_mime_type(data),
        )

        response = _get_client().models.generate_content(
            model=CAPTION_MODEL_ID,
            contents=[image_part, CAPTION_PROMPT],
        )

        text = (response.text or "").strip()
        return text or EMPTY_CAPTION
    except Exception as e:
        print(f"[caption_ai] Gemini API Error: {e}")
        return ERROR_CAPTION
