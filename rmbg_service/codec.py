"""
Image envelope codec.

Clients send images as `<tag>;base64,<payload>` where the tag declares the
format. The declared format is trusted: bytes are parsed only as that format,
never sniffed. Output is always PNG so the alpha channel survives.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Union

from PIL import Image, UnidentifiedImageError

from .errors import (
    Base64DecodeError,
    ImageDecodeError,
    ImageEncodeError,
    MalformedEnvelope,
    UnsupportedFormat,
)

DELIMITER = ";base64,"
OUTPUT_TAG = "data:image/png"

# Envelope tag -> Pillow format name.
SUPPORTED_FORMATS = {
    "data:image/jpeg": "JPEG",
    "data:image/png": "PNG",
    "data:image/webp": "WEBP",
}


@dataclass(frozen=True)
class EncodedImage:
    tag: str
    payload: str

    @classmethod
    def parse(cls, text: str) -> "EncodedImage":
        tag, sep, payload = text.partition(DELIMITER)
        if not sep:
            raise MalformedEnvelope(f"Invalid base64 envelope: expected '<type>{DELIMITER}<payload>'")
        return cls(tag=tag, payload=payload)

    def __str__(self) -> str:
        return f"{self.tag}{DELIMITER}{self.payload}"


def format_for_tag(tag: str) -> str:
    try:
        return SUPPORTED_FORMATS[tag]
    except KeyError:
        raise UnsupportedFormat(f"Unsupported image type: {tag or '<missing>'}") from None


def _b64decode(payload: str) -> bytes:
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise Base64DecodeError(f"Base64 decoding failed: {exc}") from exc
    if not raw:
        raise Base64DecodeError("Base64 payload is empty")
    return raw


def decode(envelope: Union[str, EncodedImage]) -> Image.Image:
    """
    Decode an envelope into an RGBA image.

    Raises:
        MalformedEnvelope, UnsupportedFormat, Base64DecodeError, ImageDecodeError
    """
    if not isinstance(envelope, EncodedImage):
        envelope = EncodedImage.parse(envelope)
    fmt = format_for_tag(envelope.tag)
    raw = _b64decode(envelope.payload)

    try:
        with Image.open(BytesIO(raw), formats=[fmt]) as image:
            image.load()
            return image.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Failed to load {fmt} image: {exc}") from exc


def encode(image: Image.Image) -> EncodedImage:
    buffer = BytesIO()
    try:
        image.save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise ImageEncodeError(f"Failed to encode image: {exc}") from exc
    payload = base64.b64encode(buffer.getvalue()).decode("ascii")
    return EncodedImage(tag=OUTPUT_TAG, payload=payload)
