"""
Decoder for the substitution cipher kwik wraps around its download form.

The page embeds a call like ``("<payload>",12,"<key>",7,4,31)``. The payload is
a run of segments, each closed by ``key[base]``. Inside a segment every key
character stands for its index in the key; the resulting digit string is a
number in ``base`` and, minus ``offset``, the code point of one output character.
"""

import logging
import re

from bs4 import BeautifulSoup, SoupStrainer
from pydantic import ValidationError

from paheflow.const import CHARACTER_MAP
from paheflow.extractors.base import ParseError
from paheflow.schemas import CipherParams

logger = logging.getLogger(__name__)

CIPHER_PARAMS_RE = re.compile(
    r'\(\s*"(\w+)"\s*,\s*\d+\s*,\s*"(\w+)"\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*\d+[a-zA-Z]?\s*\)'
)

DECIMAL_ALPHABET = CHARACTER_MAP[:10]


def decimal_of(content: str, base: int) -> int:
    """
    Value of ``content`` read as digits in ``base``, least significant digit last.

    Characters that are not decimal digits count as 0.
    """
    if base < 2:
        raise ValueError(f"base must be at least 2, got {base}")
    value = 0
    for position, char in enumerate(reversed(content)):
        if char in DECIMAL_ALPHABET:
            value += int(char) * base**position
    return value


def encode_digits(value: int, alphabet: str) -> str:
    """Render a non-negative ``value`` with ``alphabet`` as its digit set."""
    radix = len(alphabet)
    if radix < 2:
        raise ValueError(f"alphabet must hold at least 2 digits, got {alphabet!r}")
    if value < 0:
        raise ValueError(f"value must be non-negative, got {value}")
    if value == 0:
        return "0"

    digits = ""
    while value > 0:
        digits = alphabet[value % radix] + digits
        value //= radix
    return digits


def convert_base(content: str, from_base: int, to_base: int) -> str:
    return encode_digits(decimal_of(content, from_base), CHARACTER_MAP[:to_base])


def decode(full_string: str, key: str, offset: int, base: int) -> str:
    """
    Recover the plain text hidden in ``full_string``.

    Raises:
        ParseError: when the last segment is never terminated or a segment
            decodes to an invalid code point.
    """
    terminator = key[base]
    lookup = {}
    for index, char in enumerate(key):
        lookup.setdefault(char, str(index))

    decoded = []
    segment = []
    for char in full_string:
        if char != terminator:
            segment.append(char)
            continue

        digits = "".join(lookup.get(c, c) for c in segment)
        code_point = int(convert_base(digits, base, 10)) - offset
        try:
            decoded.append(chr(code_point))
        except (ValueError, OverflowError) as e:
            raise ParseError(f"Segment {digits!r} decodes to invalid code point {code_point}") from e
        segment = []

    if segment:
        raise ParseError(f"Unterminated cipher segment at end of payload ({len(segment)} chars)")
    return "".join(decoded)


def parse_cipher_params(text: str) -> CipherParams:
    """Pull the cipher call arguments out of a kwik page, looking in its scripts before the raw text."""
    soup = BeautifulSoup(text, "lxml", parse_only=SoupStrainer("script"))
    for script in soup.find_all("script"):
        match = CIPHER_PARAMS_RE.search(script.get_text())
        if match:
            break
    else:
        match = CIPHER_PARAMS_RE.search(text)
    if not match:
        raise ParseError("Failed to locate cipher parameters in kwik page")

    full_string, key, offset, base = match.groups()
    try:
        return CipherParams(full_string=full_string, key=key, offset=int(offset), base=int(base))
    except ValidationError as e:
        raise ParseError(f"Malformed cipher parameters: {e}") from e


def decode_params(params: CipherParams) -> str:
    logger.debug("Decoding %d cipher chars with base %d", len(params.full_string), params.base)
    return decode(params.full_string, params.key, params.offset, params.base)
