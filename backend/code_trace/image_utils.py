"""Screenshot shrinking before it is handed to the model."""
from PIL import Image
import io
import base64

from code_trace.config import get_settings


def compress_screenshot(png_bytes: bytes, max_width: int | None = None,
                        quality: int | None = None) -> bytes:
    """
    Re-encode a viewport capture as a white-backed JPEG no wider than
    ``max_width``. Both limits default to the screenshot settings.
    """
    settings = get_settings()
    max_width = max_width or settings.screenshot_max_width
    quality = quality or settings.screenshot_quality

    with Image.open(io.BytesIO(png_bytes)) as capture:
        frame = capture.convert("RGBA")
    if frame.width > max_width:
        height = max(1, round(frame.height * max_width / frame.width))
        frame = frame.resize((max_width, height), Image.LANCZOS)

    flat = Image.new("RGB", frame.size, "white")
    flat.paste(frame, mask=frame.getchannel("A"))

    buf = io.BytesIO()
    flat.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def screenshot_block(png_bytes: bytes, compress: bool = True) -> dict:
    """Build an Anthropic image content block from raw screenshot bytes."""
    if compress:
        data, media_type = compress_screenshot(png_bytes), "image/jpeg"
    else:
        data, media_type = png_bytes, "image/png"
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": media_type,
            "data": base64.b64encode(data).decode(),
        },
    }
