"""
core/images.py -- Validation of inline icon images (data URLs).

An admin may paste an icon as data:image/<subtype>;base64,<payload>. Before it
is accepted into the catalog we:

  1. Match the data URL against a fixed subtype allow-list.
  2. Cap the base64 length so the decoded image is at most ~2 MB.
  3. Decode the base64 payload strictly (validate=True).
  4. Raster images: open with Pillow, reject if either side exceeds 5000 px,
     then call load() so the pixel data is actually decoded -- a file whose
     header lies about its content fails here rather than in a browser.
     The declared subtype must match the format Pillow detects.
  5. SVG: Pillow cannot rasterize it, so it is parsed as XML instead. Any
     script element, event handler attribute, javascript: URL, DOCTYPE or
     entity declaration is rejected; declared width/height are bounded.

Decompression bombs: Pillow's DecompressionBombWarning is promoted to an
error for the duration of the decode so oversized pixel counts never reach
load().
"""

from __future__ import annotations

import base64
import binascii
import io
import math
import re
import warnings
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from core.errors import ValidationError

ALLOWED_SUBTYPES = ("png", "jpeg", "jpg", "gif", "webp", "svg+xml")
MAX_IMAGE_BYTES = 2 * 1024 * 1024
MAX_BASE64_LENGTH = math.ceil(MAX_IMAGE_BYTES * 4 / 3)
MAX_DIMENSION = 5000

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg|gif|webp|svg\+xml);base64,([A-Za-z0-9+/=]+)$")

# Pillow format name expected for each declared subtype.
_PIL_FORMATS = {
    "png": "PNG",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "gif": "GIF",
    "webp": "WEBP",
}

_SVG_FORBIDDEN = re.compile(r"<script|javascript:|<!doctype|<!entity|\bon[a-z]+\s*=", re.IGNORECASE)
_SVG_LENGTH = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*(px)?\s*$")


@dataclass(frozen=True)
class ImageInfo:
    subtype: str
    width: int
    height: int
    size_bytes: int


def is_image_data_url(value: str) -> bool:
    return value.startswith("data:image/")


def validate_image_data_url(value: str) -> ImageInfo:
    """Return ImageInfo for an acceptable icon data URL, else raise ValidationError."""
    match = _DATA_URL_RE.match(value)
    if match is None:
        allowed = ", ".join(ALLOWED_SUBTYPES)
        raise ValidationError(f"Icon must be a base64 data URL of type: {allowed}.", field="icon")

    subtype, payload = match.group(1), match.group(2)
    if len(payload) > MAX_BASE64_LENGTH:
        raise ValidationError("Icon image is larger than 2 MB.", field="icon")

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Icon image is not valid base64.", field="icon") from exc
    if not raw:
        raise ValidationError("Icon image is empty.", field="icon")

    if subtype == "svg+xml":
        width, height = _check_svg(raw)
    else:
        width, height = _decode_raster(raw, subtype)
    return ImageInfo(subtype=subtype, width=width, height=height, size_bytes=len(raw))


def _decode_raster(raw: bytes, subtype: str) -> tuple[int, int]:
    with warnings.catch_warnings():
        warnings.simplefilter("error", Image.DecompressionBombWarning)
        try:
            with Image.open(io.BytesIO(raw)) as img:
                width, height = img.size
                detected = img.format
                if width <= MAX_DIMENSION and height <= MAX_DIMENSION:
                    img.load()
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            Image.DecompressionBombWarning,
            OSError,
            SyntaxError,
            ValueError,
        ) as exc:
            raise ValidationError("Icon image could not be decoded.", field="icon") from exc

    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise ValidationError(
            f"Icon image is {width}x{height}px; the maximum is {MAX_DIMENSION}px per side.",
            field="icon",
        )
    if detected != _PIL_FORMATS[subtype]:
        raise ValidationError(f"Icon content is {detected}, not {subtype}.", field="icon")
    return width, height


def _check_svg(raw: bytes) -> tuple[int, int]:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError("SVG icon is not valid UTF-8.", field="icon") from exc

    if _SVG_FORBIDDEN.search(text):
        raise ValidationError("SVG icon contains scripts or event handlers.", field="icon")

    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise ValidationError("SVG icon is not well-formed XML.", field="icon") from exc
    if not root.tag.lower().endswith("svg"):
        raise ValidationError("SVG icon root element must be <svg>.", field="icon")

    width = _svg_length(root.get("width"))
    height = _svg_length(root.get("height"))
    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise ValidationError(
            f"Icon image is {width}x{height}px; the maximum is {MAX_DIMENSION}px per side.",
            field="icon",
        )
    return width, height


def _svg_length(value: str | None) -> int:
    """Return an SVG width/height in px; relative units and absent values count as 0."""
    if not value:
        return 0
    match = _SVG_LENGTH.match(value)
    if match is None:
        return 0
    return math.ceil(float(match.group(1)))
