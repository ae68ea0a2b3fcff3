import base64
import binascii
import logging
import re

from paheflow.const import ADFLY_FRAME_WIDTH
from paheflow.extractors.base import ParseError

logger = logging.getLogger(__name__)

YSMM_RE = re.compile(r"ysmm = '([^']+)")


def extract_ysmm(text: str) -> str:
    """Find the scrambled link token in an ad-gate page."""
    match = YSMM_RE.search(text)
    if not match:
        raise ParseError("Failed to locate ysmm token in ad-gate page")
    return match.group(1)


def deinterleave(token: str) -> str:
    """Even positions in order, followed by odd positions in reverse."""
    return token[0::2] + token[1::2][::-1]


def xor_digit_pairs(chars: list[str]) -> list[str]:
    """
    Pair up the decimal digits of ``chars`` in document order and replace the
    first of each pair with the XOR of both when it is still a single digit.
    A trailing unpaired digit is left alone.
    """
    digits = [(index, int(char)) for index, char in enumerate(chars) if char in "0123456789"]
    for (first_index, first), (_, second) in zip(digits[0::2], digits[1::2]):
        value = first ^ second
        if value < 10:
            chars[first_index] = str(value)
    return chars


def b64decode_padded(encoded: str) -> str:
    missing_padding = len(encoded) % 4
    if missing_padding:
        encoded += "=" * (4 - missing_padding)
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ParseError(f"Descrambled ad-gate token is not valid base64: {e}") from e


def descramble(token: str) -> str:
    """
    Recover the link hidden in an ad-gate ``ysmm`` token.

    Returns an empty string when the decoded payload holds nothing but its
    framing, which callers treat as "no link".
    """
    chars = xor_digit_pairs(list(deinterleave(token)))
    payload = b64decode_padded("".join(chars))
    if len(payload) <= 2 * ADFLY_FRAME_WIDTH:
        logger.debug("Ad-gate payload of %d chars carries no link", len(payload))
        return ""
    return payload[ADFLY_FRAME_WIDTH:-ADFLY_FRAME_WIDTH]
