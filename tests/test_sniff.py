import pytest

from tserver.adapters.sniff import OCTET_STREAM, SNIFF_LEN, TEXT_UTF8, detect_content_type


@pytest.mark.parametrize(
    "data,expected",
    [
        (b"", TEXT_UTF8),
        (b'{"a":1}', TEXT_UTF8),
        (b"plain old text", TEXT_UTF8),
        (b"<!DOCTYPE HTML><html></html>", "text/html; charset=utf-8"),
        (b"  \n<html>x</html>", "text/html; charset=utf-8"),
        (b"<HtMl><body>", "text/html; charset=utf-8"),
        (b"<!-- comment -->", "text/html; charset=utf-8"),
        (b"<?xml version='1.0'?><a/>", "text/xml; charset=utf-8"),
        (b"%PDF-1.7 ...", "application/pdf"),
        (b"%!PS-Adobe-3.0", "application/postscript"),
        (b"\xfe\xff\x00\x41", "text/plain; charset=utf-16be"),
        (b"\xff\xfe\x41\x00", "text/plain; charset=utf-16le"),
        (b"\xef\xbb\xbfhello", TEXT_UTF8),
        (b"GIF89a....", "image/gif"),
        (b"GIF87a....", "image/gif"),
        (b"\x89PNG\x0d\x0a\x1a\x0a....", "image/png"),
        (b"\xff\xd8\xff\xe0", "image/jpeg"),
        (b"BM....", "image/bmp"),
        (b"RIFF\x10\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"RIFF\x10\x00\x00\x00WAVEfmt ", "audio/wave"),
        (b"ID3\x03\x00", "audio/mpeg"),
        (b"OggS\x00\x02", "application/ogg"),
        (b"\x1a\x45\xdf\xa3\x01", "video/webm"),
        (b"\x1f\x8b\x08\x00", "application/x-gzip"),
        (b"PK\x03\x04\x14\x00", "application/zip"),
        (b"\x00asm\x01\x00\x00\x00", "application/wasm"),
        (b"wOF2\x00\x01", "font/woff2"),
        (b"\x00\x01\x02\x03binary", OCTET_STREAM),
    ],
)
def test_detect_content_type(data, expected):
    assert detect_content_type(data) == expected


def test_html_tag_needs_terminator():
    # "<bx" is not a <b> tag
    assert detect_content_type(b"<bx>") == TEXT_UTF8


def test_mp4_box():
    data = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom"
    assert detect_content_type(data) == "video/mp4"


def test_only_first_512_bytes_considered():
    data = b"a" * SNIFF_LEN + b"\x00\x01"
    assert detect_content_type(data) == TEXT_UTF8
