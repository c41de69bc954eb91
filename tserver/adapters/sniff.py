"""
Content sniffing: pick a Content-Type by looking at the bytes themselves.

Follows the WHATWG MIME sniffing rules for the subset of types browsers and
HTTP servers commonly report. Only the first 512 bytes are considered, and
the fallback is text/plain when no binary control bytes are present,
application/octet-stream otherwise.
"""

from __future__ import annotations

import struct
from typing import Callable, List, Optional, Tuple

SNIFF_LEN = 512

TEXT_UTF8 = "text/plain; charset=utf-8"
OCTET_STREAM = "application/octet-stream"

_WS = b"\t\n\x0c\r "
_BINARY = frozenset(list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20)))

Matcher = Callable[[bytes, int], Optional[str]]


def _html(sig: bytes) -> Matcher:
    def match(data: bytes, first_non_ws: int) -> Optional[str]:
        data = data[first_non_ws:]
        if len(data) < len(sig) + 1:
            return None
        for i, b in enumerate(sig):
            db = data[i]
            if ord("A") <= b <= ord("Z"):
                db &= 0xDF
            if b != db:
                return None
        # tag must be terminated
        if data[len(sig)] not in b" >":
            return None
        return "text/html; charset=utf-8"

    return match


def _masked(mask: bytes, pat: bytes, ctype: str, skip_ws: bool = False) -> Matcher:
    assert len(mask) == len(pat)

    def match(data: bytes, first_non_ws: int) -> Optional[str]:
        if skip_ws:
            data = data[first_non_ws:]
        if len(data) < len(pat):
            return None
        for i, p in enumerate(pat):
            if data[i] & mask[i] != p:
                return None
        return ctype

    return match


def _exact(sig: bytes, ctype: str) -> Matcher:
    def match(data: bytes, first_non_ws: int) -> Optional[str]:
        return ctype if data.startswith(sig) else None

    return match


def _mp4(data: bytes, first_non_ws: int) -> Optional[str]:
    if len(data) < 12:
        return None
    (box_size,) = struct.unpack(">I", data[:4])
    if len(data) < box_size or box_size % 4 != 0:
        return None
    if data[4:8] != b"ftyp":
        return None
    for st in range(8, box_size, 4):
        if st == 12:
            # skip the minor version number
            continue
        if data[st:st + 3] == b"mp4":
            return "video/mp4"
    return None


def _text(data: bytes, first_non_ws: int) -> Optional[str]:
    for b in data[first_non_ws:]:
        if b in _BINARY:
            return None
    return TEXT_UTF8


_HTML_TAGS: Tuple[bytes, ...] = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P",
    b"<!--",
)

_RIFF_MASK = b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF"

_SIGNATURES: List[Matcher] = [
    *(_html(tag) for tag in _HTML_TAGS),
    _masked(b"\xFF\xFF\xFF\xFF\xFF", b"<?xml", "text/xml; charset=utf-8", skip_ws=True),
    _exact(b"%PDF-", "application/pdf"),
    _exact(b"%!PS-Adobe-", "application/postscript"),
    # byte order marks
    _masked(b"\xFF\xFF\x00\x00", b"\xFE\xFF\x00\x00", "text/plain; charset=utf-16be"),
    _masked(b"\xFF\xFF\x00\x00", b"\xFF\xFE\x00\x00", "text/plain; charset=utf-16le"),
    _masked(b"\xFF\xFF\xFF\x00", b"\xEF\xBB\xBF\x00", TEXT_UTF8),
    # images
    _exact(b"\x00\x00\x01\x00", "image/x-icon"),
    _exact(b"\x00\x00\x02\x00", "image/x-icon"),
    _exact(b"BM", "image/bmp"),
    _exact(b"GIF87a", "image/gif"),
    _exact(b"GIF89a", "image/gif"),
    _masked(_RIFF_MASK + b"\xFF\xFF", b"RIFF\x00\x00\x00\x00WEBPVP", "image/webp"),
    _exact(b"\x89PNG\x0D\x0A\x1A\x0A", "image/png"),
    _exact(b"\xFF\xD8\xFF", "image/jpeg"),
    # audio and video
    _masked(b"\xFF\xFF\xFF\xFF", b".snd", "audio/basic"),
    _masked(_RIFF_MASK, b"FORM\x00\x00\x00\x00AIFF", "audio/aiff"),
    _masked(b"\xFF\xFF\xFF", b"ID3", "audio/mpeg"),
    _masked(b"\xFF\xFF\xFF\xFF\xFF", b"OggS\x00", "application/ogg"),
    _masked(b"\xFF" * 8, b"MThd\x00\x00\x00\x06", "audio/midi"),
    _masked(_RIFF_MASK, b"RIFF\x00\x00\x00\x00AVI ", "video/avi"),
    _masked(_RIFF_MASK, b"RIFF\x00\x00\x00\x00WAVE", "audio/wave"),
    _mp4,
    _exact(b"\x1A\x45\xDF\xA3", "video/webm"),
    # fonts
    _masked(b"\x00" * 34 + b"\xFF\xFF", b"\x00" * 34 + b"LP", "application/vnd.ms-fontobject"),
    _exact(b"\x00\x01\x00\x00", "font/ttf"),
    _exact(b"OTTO", "font/otf"),
    _exact(b"ttcf", "font/collection"),
    _exact(b"wOFF", "font/woff"),
    _exact(b"wOF2", "font/woff2"),
    # archives
    _exact(b"\x1F\x8B\x08", "application/x-gzip"),
    _exact(b"PK\x03\x04", "application/zip"),
    _exact(b"Rar!\x1A\x07\x00", "application/x-rar-compressed"),
    _exact(b"Rar!\x1A\x07\x01\x00", "application/x-rar-compressed"),
    _exact(b"\x00\x61\x73\x6D", "application/wasm"),
    _text,
]


def detect_content_type(data: bytes) -> str:
    """Returns the MIME type sniffed from `data`; never fails."""
    data = bytes(data[:SNIFF_LEN])
    first_non_ws = 0
    while first_non_ws < len(data) and data[first_non_ws] in _WS:
        first_non_ws += 1
    for sig in _SIGNATURES:
        ctype = sig(data, first_non_ws)
        if ctype:
            return ctype
    return OCTET_STREAM
