import base64
import binascii

from utils.errors import DecodeError


def infer_mime_type(image_bytes: bytes) -> str:
    """Best-effort image MIME sniffing for uploads."""
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"GIF87a") or image_bytes.startswith(b"GIF89a"):
        return "image/gif"
    if image_bytes.startswith(b"RIFF") and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def decode_image_payload(payload: str) -> bytes:
    """Decode a base64 image, with or without a ``data:`` URL prefix."""
    encoded = (payload or "").strip()
    if encoded.startswith("data:"):
        header, _, encoded = encoded.partition(",")
        if ";base64" not in header:
            raise DecodeError("Image payload must be base64 encoded")

    # Browsers strip padding and line-wrap long payloads
    encoded = "".join(encoded.split())
    encoded += "=" * (-len(encoded) % 4)

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Malformed image encoding: {exc}") from exc

    if not data:
        raise DecodeError("Image payload is empty")
    return data
