"""Image fetching, type detection and format conversion utilities."""

from __future__ import annotations

import base64
import io
import logging
from typing import Optional, Tuple
from urllib.parse import unquote_to_bytes

import requests
from filetype import guess
from PIL import Image, UnidentifiedImageError

from .config import MAX_PAYLOAD_BYTES

logger = logging.getLogger("picpick.images")

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/pjpeg": "jpg",
    "image/svg+xml": "svg",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
    "image/tiff": "tiff",
}

# target extension -> (Pillow format name, encoder options)
CONVERSION_TARGETS = {
    "png": ("PNG", {"optimize": False}),
    "jpg": ("JPEG", {"quality": 100, "subsampling": 0}),
    "webp": ("WEBP", {"lossless": True, "quality": 100}),
    "gif": ("GIF", {}),
    "bmp": ("BMP", {}),
}

_ALPHA_UNSUPPORTED = {"JPEG", "BMP"}


class FetchError(RuntimeError):
    """Raised when a resource cannot be retrieved."""


class ConversionError(RuntimeError):
    """Raised when a payload cannot be decoded or re-encoded."""


def normalize_target(target: Optional[str]) -> Optional[str]:
    """Map user input like ``image/jpeg`` or ``JPEG`` onto a conversion target."""
    if not target:
        return None
    value = target.strip().lower()
    if "/" in value:
        value = extension_for_mime(value) or value.split("/", 1)[1]
    if value == "jpeg":
        value = "jpg"
    if value not in CONVERSION_TARGETS:
        raise ValueError(
            f"Unsupported conversion target {target!r}; "
            f"choose from {', '.join(sorted(CONVERSION_TARGETS))}"
        )
    return value


def extension_for_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    if mime in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime]
    parts = mime.split("/")
    if len(parts) == 2 and parts[0] == "image" and parts[1]:
        return parts[1].split("+")[0]
    return None


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _looks_like_svg(data: bytes) -> bool:
    head = data[:1024].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


def infer_image_extension(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Guess an image file extension from the file signature or declared type."""
    detected = detect_image_format(data)
    if detected:
        return detected
    declared = extension_for_mime(content_type)
    if declared:
        return declared
    if _looks_like_svg(data):
        return "svg"
    return None


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    """Decode a ``data:`` URI into its bytes and declared media type."""
    header, sep, body = uri[len("data:"):].partition(",")
    if not sep:
        raise FetchError("malformed data URI")
    params = header.split(";")
    media_type = params[0] or "text/plain"
    try:
        if "base64" in (param.strip().lower() for param in params[1:]):
            data = base64.b64decode(unquote_to_bytes(body), validate=False)
        else:
            data = unquote_to_bytes(body)
    except ValueError as exc:
        raise FetchError(f"malformed data URI: {exc}") from exc
    return data, media_type


def fetch_payload(
    uri: str,
    session: requests.Session,
    timeout: float = 15.0,
    max_bytes: int = MAX_PAYLOAD_BYTES,
) -> Tuple[bytes, str]:
    """Retrieve a resource as ``(bytes, content_type)``."""
    if uri.startswith("data:"):
        data, content_type = decode_data_uri(uri)
    elif uri.startswith(("http://", "https://")):
        try:
            resp = session.get(uri, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"failed to fetch {uri}: {exc}") from exc
        data = resp.content
        content_type = resp.headers.get("Content-Type", "")
    else:
        raise FetchError(f"unsupported scheme for {uri[:64]}")
    if len(data) > max_bytes:
        raise FetchError(f"{uri[:64]} is larger than {max_bytes} bytes")
    return data, content_type


def convert_image(data: bytes, target: str) -> bytes:
    """Decode ``data`` and re-encode it as ``target`` (see ``CONVERSION_TARGETS``)."""
    fmt, options = CONVERSION_TARGETS[target]
    try:
        with Image.open(io.BytesIO(data)) as raw_image:
            raw_image.load()
            image = raw_image
            if fmt in _ALPHA_UNSUPPORTED and image.mode not in ("RGB", "L"):
                rgba = image.convert("RGBA")
                image = Image.new("RGB", rgba.size, (255, 255, 255))
                image.paste(rgba, mask=rgba.getchannel("A"))
            elif fmt == "GIF" and image.mode not in ("P", "L"):
                image = image.convert("RGBA").quantize()
            buffer = io.BytesIO()
            image.save(buffer, format=fmt, **options)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ConversionError(f"cannot convert payload to {target}: {exc}") from exc
    return buffer.getvalue()
