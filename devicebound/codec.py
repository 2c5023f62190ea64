"""URL-safe base64 helpers used for every binary field on the wire."""
from __future__ import annotations

import base64
import binascii
from typing import Union

__all__ = ["CodecError", "decode", "encode"]


BytesLike = Union[bytes, bytearray, memoryview]


class CodecError(ValueError):
    """Raised when text cannot be decoded as URL-safe base64."""


def _add_base64_padding(value: str) -> str:
    return value + "=" * ((4 - len(value) % 4) % 4)


def encode(data: BytesLike) -> str:
    """Encode ``data`` with the URL-safe alphabet and no trailing padding."""

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise CodecError(f"cannot encode {type(data).__name__}; expected bytes")

    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def decode(value: str) -> bytes:
    """Decode URL-safe base64 text, tolerating missing padding.

    The URL-safe alphabet is mapped back to the standard one before a strict
    decode, so characters outside either alphabet are rejected instead of
    being discarded.
    """

    if not isinstance(value, str):
        raise CodecError(f"cannot decode {type(value).__name__}; expected str")

    if len(value) % 4 == 1:
        raise CodecError("invalid base64url length")

    standard = value.replace("-", "+").replace("_", "/")
    try:
        return base64.b64decode(_add_base64_padding(standard), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CodecError(f"invalid base64url value: {exc}") from exc
