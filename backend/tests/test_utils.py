import base64

import pytest

from utils.errors import DecodeError
from utils.image import decode_image_payload, infer_mime_type
from utils.scene_prompt_builder import clamp_prompt, create_description_request, create_fallback_prompt

PNG_HEADER = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


def test_decode_plain_base64():
    assert decode_image_payload(base64.b64encode(PNG_HEADER).decode()) == PNG_HEADER


def test_decode_data_url_and_missing_padding():
    encoded = base64.b64encode(b"abcd1").decode().rstrip("=")
    assert decode_image_payload(f"data:image/jpeg;base64,{encoded}") == b"abcd1"


@pytest.mark.parametrize("payload", ["not base64!!", "", "data:image/png,rawbytes", "abcde"])
def test_decode_rejects_malformed_payloads(payload):
    with pytest.raises(DecodeError):
        decode_image_payload(payload)


def test_mime_sniffing():
    assert infer_mime_type(PNG_HEADER) == "image/png"
    assert infer_mime_type(b"\xff\xd8\xff\xe0") == "image/jpeg"
    assert infer_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert infer_mime_type(b"unknown") == "image/jpeg"


def test_fallback_prompt_keeps_camera_control():
    assert create_fallback_prompt("zoom-in") == (
        "A realistic scene with zoom-in camera movement and natural ambient motion."
    )


def test_description_request_mentions_camera_control():
    assert '"pan-left"' in create_description_request("pan-left")


def test_clamp_prompt():
    long_prompt = "slow drifting light " * 40
    clamped = clamp_prompt(long_prompt, 350)
    assert len(clamped) <= 350
    assert clamped == clamped.strip()
    assert clamp_prompt("  short\n prompt ", 350) == "short prompt"
