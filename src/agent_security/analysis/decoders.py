"""Decoders that recover text hidden behind common encodings."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote


class Encoding(str, Enum):
    BASE64 = "base64"
    HEX = "hex"
    HEX_ESCAPE = "hex_escape"
    UNICODE_ESCAPE = "unicode_escape"
    PERCENT = "percent"


@dataclass(slots=True)
class DecodedPayload:
    """A span of the input together with the text it decodes to."""

    encoding: Encoding
    original: str
    decoded: str
    start: int = 0


_BASE64_RE = re.compile(r"(?<![A-Za-z0-9+/=])[A-Za-z0-9+/]{16,}={0,2}(?![A-Za-z0-9+/=])")
_HEX_RE = re.compile(r"(?<![0-9A-Fa-f])(?:[0-9A-Fa-f]{2}){8,}(?![0-9A-Fa-f])")
_HEX_ESCAPE_RE = re.compile(r"(?:\\x[0-9A-Fa-f]{2}){4,}")
_UNICODE_ESCAPE_RE = re.compile(r"(?:\\u(?:[0-9A-Fa-f]{4}|\{[0-9A-Fa-f]{1,6}\})){4,}")
_UNICODE_UNIT_RE = re.compile(r"\\u(?:([0-9A-Fa-f]{4})|\{([0-9A-Fa-f]{1,6})\})")
_PERCENT_RE = re.compile(r"(?:[^\s%\"'`<>]*%[0-9A-Fa-f]{2}){3,}[^\s%\"'`<>]*")

MIN_PRINTABLE_RATIO = 0.8
MIN_DECODED_LENGTH = 4


def _looks_like_text(value: str) -> bool:
    if len(value.strip()) < MIN_DECODED_LENGTH:
        return False
    printable = sum(1 for ch in value if ch.isprintable() or ch in "\t\r\n")
    return printable / len(value) >= MIN_PRINTABLE_RATIO


def _bytes_to_text(raw: bytes) -> Optional[str]:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _decode_base64(candidate: str) -> Optional[str]:
    body = candidate.rstrip("=")
    if len(body) % 4 == 1:
        return None
    padded = body + "=" * (-len(body) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return None
    return _bytes_to_text(raw)


def _decode_hex(candidate: str) -> Optional[str]:
    try:
        return _bytes_to_text(bytes.fromhex(candidate))
    except ValueError:
        return None


def _decode_hex_escape(candidate: str) -> Optional[str]:
    raw = bytes(int(candidate[i + 2 : i + 4], 16) for i in range(0, len(candidate), 4))
    text = _bytes_to_text(raw)
    return text if text is not None else raw.decode("latin-1")


def _decode_unicode_escape(candidate: str) -> Optional[str]:
    codes = []
    for match in _UNICODE_UNIT_RE.finditer(candidate):
        code = int(match.group(1) or match.group(2), 16)
        if code > 0x10FFFF:
            return None
        codes.append(code)

    # Surrogate pairs become one code point; unpaired halves become U+FFFD.
    chars = []
    index = 0
    while index < len(codes):
        code = codes[index]
        following = codes[index + 1] if index + 1 < len(codes) else None
        if 0xD800 <= code <= 0xDBFF and following is not None and 0xDC00 <= following <= 0xDFFF:
            chars.append(chr(0x10000 + ((code - 0xD800) << 10) + (following - 0xDC00)))
            index += 2
            continue
        chars.append("\ufffd" if 0xD800 <= code <= 0xDFFF else chr(code))
        index += 1
    return "".join(chars)


def _decode_percent(candidate: str) -> Optional[str]:
    try:
        return unquote(candidate, errors="strict")
    except UnicodeDecodeError:
        return None


_DECODERS: Dict[Encoding, tuple[re.Pattern[str], Callable[[str], Optional[str]]]] = {
    Encoding.BASE64: (_BASE64_RE, _decode_base64),
    Encoding.HEX: (_HEX_RE, _decode_hex),
    Encoding.HEX_ESCAPE: (_HEX_ESCAPE_RE, _decode_hex_escape),
    Encoding.UNICODE_ESCAPE: (_UNICODE_ESCAPE_RE, _decode_unicode_escape),
    Encoding.PERCENT: (_PERCENT_RE, _decode_percent),
}


class Decoder:
    """Find encoded spans in text and decode the ones that yield readable text."""

    def __init__(self, *, max_payloads: int = 256) -> None:
        self.max_payloads = max_payloads

    # ------------------------------------------------------------------
    def decode(self, text: str) -> List[DecodedPayload]:
        """Return every decodable span of ``text`` ordered by position."""

        payloads: List[DecodedPayload] = []
        for encoding, (pattern, decode) in _DECODERS.items():
            for match in pattern.finditer(text):
                original = match.group(0)
                decoded = decode(original)
                if decoded is None or decoded == original or not _looks_like_text(decoded):
                    continue
                payloads.append(
                    DecodedPayload(
                        encoding=encoding,
                        original=original,
                        decoded=decoded,
                        start=match.start(),
                    )
                )

        payloads.sort(key=lambda payload: (payload.start, payload.encoding.value))
        return payloads[: self.max_payloads]

    # ------------------------------------------------------------------
    def decode_recursive(self, text: str, depth: int = 1) -> List[List[DecodedPayload]]:
        """Decode ``text`` up to ``depth`` times, one list of payloads per layer.

        Each layer decodes the output of the previous one. Decoding stops early
        once a layer finds nothing.
        """

        layers: List[List[DecodedPayload]] = []
        sources = [text]
        for _ in range(max(depth, 0)):
            layer: List[DecodedPayload] = []
            for source in sources:
                layer.extend(self.decode(source))
            if not layer:
                break
            layers.append(layer)
            sources = [payload.decoded for payload in layer]
        return layers


__all__ = ["DecodedPayload", "Decoder", "Encoding"]
