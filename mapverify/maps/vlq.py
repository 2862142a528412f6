"""Base64 VLQ codec used by the "mappings" field.

Each base64 digit carries 6 bits: the high bit is the continuation bit and
the low bit of the first digit is the sign.
"""

from typing import List, Tuple

from .errors import EncodingError

BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
BASE64_VALUES = {c: i for i, c in enumerate(BASE64_ALPHABET)}

# Values are 32-bit signed integers
VLQ_MIN = -(2 ** 31)
VLQ_MAX = 2 ** 31 - 1
MAX_SHIFT = 30


def encode_vlq(value: int) -> str:
    """Encode a single signed integer."""
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1

    digits = []
    while True:
        digit = vlq & 31
        vlq >>= 5
        if vlq:
            digit |= 32
        digits.append(BASE64_ALPHABET[digit])
        if not vlq:
            break
    return "".join(digits)


def decode_vlq(text: str, start: int = 0) -> Tuple[int, int]:
    """Decode one value starting at ``start``, return (value, next offset)."""
    shift = 0
    vlq = 0
    current = start

    while True:
        if current >= len(text):
            raise EncodingError(f"Unterminated VLQ value at offset {start}")
        digit = BASE64_VALUES.get(text[current])
        if digit is None:
            raise EncodingError(f"Invalid VLQ digit {text[current]!r} at offset {current}")

        vlq |= (digit & 31) << shift
        current += 1
        shift += 5

        if not digit & 32:
            break
        if shift > MAX_SHIFT:
            raise EncodingError(f"VLQ value out of range at offset {start}")

    value = vlq >> 1
    if vlq & 1:
        value = -value
    if not VLQ_MIN <= value <= VLQ_MAX:
        raise EncodingError(f"VLQ value out of range at offset {start}")
    return value, current


def decode_segment_fields(text: str) -> List[int]:
    """Decode every VLQ value packed in one segment string."""
    values = []
    offset = 0
    while offset < len(text):
        value, offset = decode_vlq(text, offset)
        values.append(value)
    return values
