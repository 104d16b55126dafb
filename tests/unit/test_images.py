import io

import pytest
from PIL import Image

from picpick.images import (
    ConversionError,
    FetchError,
    convert_image,
    decode_data_uri,
    extension_for_mime,
    fetch_payload,
    infer_image_extension,
    normalize_target,
)


def test_infer_extension_prefers_signature_over_header(png_bytes) -> None:
    assert infer_image_extension("image/jpeg", png_bytes()) == "png"


def test_infer_extension_falls_back_to_declared_type() -> None:
    assert infer_image_extension("image/svg+xml; charset=utf-8", b"<svg></svg>") == "svg"
    assert infer_image_extension("image/x-icon", b"\x00\x00") == "ico"


def test_infer_extension_sniffs_untyped_svg() -> None:
    svg = b'<?xml version="1.0"?>\n<svg xmlns="http://www.w3.org/2000/svg"></svg>'
    assert infer_image_extension("", svg) == "svg"


def test_infer_extension_rejects_html() -> None:
    assert infer_image_extension("text/html", b"<!doctype html><html></html>") is None


def test_extension_for_mime_normalizes_jpeg() -> None:
    assert extension_for_mime("image/jpeg") == "jpg"
    assert extension_for_mime("application/octet-stream") is None


def test_decode_data_uri_base64_and_percent_forms(png_bytes, data_uri) -> None:
    payload = png_bytes()
    assert decode_data_uri(data_uri(payload)) == (payload, "image/png")
    assert decode_data_uri("data:image/svg+xml,%3Csvg%3E%3C/svg%3E") == (b"<svg></svg>", "image/svg+xml")


def test_decode_data_uri_without_comma_fails() -> None:
    with pytest.raises(FetchError):
        decode_data_uri("data:image/png;base64")


def test_fetch_payload_uses_session(fake_http, png_bytes) -> None:
    fake_http.add("https://example.com/a.png", png_bytes(), "image/png")

    data, content_type = fetch_payload("https://example.com/a.png", fake_http)

    assert data == png_bytes()
    assert content_type == "image/png"


def test_fetch_payload_wraps_http_errors(fake_http) -> None:
    fake_http.add("https://example.com/404.png", b"", "text/html", status=404)

    with pytest.raises(FetchError):
        fetch_payload("https://example.com/404.png", fake_http)
    with pytest.raises(FetchError):
        fetch_payload("https://example.com/unreachable.png", fake_http)
    with pytest.raises(FetchError):
        fetch_payload("blob:https://example.com/1234", fake_http)


def test_fetch_payload_enforces_size_limit(fake_http) -> None:
    fake_http.add("https://example.com/big.png", b"x" * 100, "image/png")

    with pytest.raises(FetchError):
        fetch_payload("https://example.com/big.png", fake_http, max_bytes=10)


@pytest.mark.parametrize("target,fmt", [("jpg", "JPEG"), ("webp", "WEBP"), ("gif", "GIF"), ("bmp", "BMP")])
def test_convert_image_targets(png_bytes, target, fmt) -> None:
    converted = convert_image(png_bytes((0, 128, 255)), target)

    with Image.open(io.BytesIO(converted)) as image:
        assert image.format == fmt


def test_convert_png_is_lossless(png_bytes) -> None:
    buffer = io.BytesIO()
    Image.new("RGBA", (3, 3), (10, 20, 30, 40)).save(buffer, format="WEBP", lossless=True)

    converted = convert_image(buffer.getvalue(), "png")

    with Image.open(io.BytesIO(converted)) as image:
        assert image.convert("RGBA").getpixel((1, 1)) == (10, 20, 30, 40)


def test_convert_rejects_non_images() -> None:
    with pytest.raises(ConversionError):
        convert_image(b"<svg></svg>", "png")


def test_normalize_target() -> None:
    assert normalize_target(None) is None
    assert normalize_target("") is None
    assert normalize_target("image/jpeg") == "jpg"
    assert normalize_target("PNG") == "png"
    with pytest.raises(ValueError):
        normalize_target("tiff")
