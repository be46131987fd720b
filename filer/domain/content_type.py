"""Content-type detection for stored objects."""

from __future__ import annotations

import mimetypes

BINARY_CONTENT_TYPE = "application/octet-stream"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
SNIFF_BYTES = 512

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"OggS\x00", "application/ogg"),
    (b"ID3", "audio/mpeg"),
    (b"fLaC", "audio/flac"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"Rar!\x1a\x07", "application/x-rar-compressed"),
    (b"\x00asm", "application/wasm"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
)

_HTML_TAGS: tuple[bytes, ...] = (
    b"<!doctype html",
    b"<html",
    b"<head",
    b"<script",
    b"<iframe",
    b"<h1",
    b"<div",
    b"<font",
    b"<table",
    b"<a",
    b"<style",
    b"<title",
    b"<b",
    b"<body",
    b"<br",
    b"<p",
    b"<!--",
)

_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", TEXT_CONTENT_TYPE),
)

# bytes that never appear in text files
_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


def sniff_content_type(data: bytes) -> str:
    """Guess a MIME type from the first bytes of a body.

    Always returns a value; :data:`BINARY_CONTENT_TYPE` when nothing matched.
    """
    data = data[:SNIFF_BYTES]
    if not data:
        return TEXT_CONTENT_TYPE

    for bom, content_type in _BOMS:
        if data.startswith(bom):
            return content_type

    stripped = data.lstrip(b"\t\n\x0c\r ")
    lowered = stripped[:16].lower()
    for tag in _HTML_TAGS:
        if lowered.startswith(tag):
            rest = lowered[len(tag) : len(tag) + 1]
            if tag == b"<!--" or rest in (b" ", b">"):
                return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"

    for signature, content_type in _SIGNATURES:
        if data.startswith(signature):
            return content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wave"
    if data[4:8] == b"ftyp":
        return "video/mp4"

    if any(byte in _BINARY_BYTES for byte in data):
        return BINARY_CONTENT_TYPE
    return TEXT_CONTENT_TYPE


def type_by_extension(filename: str) -> str | None:
    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type


def resolve_content_type(
    stored: str | None, sniffed: str | None, filename: str | None
) -> str:
    """Pick the best content type for an object.

    Priority: a stored type other than the binary fallback, then a sniffed
    type other than the binary fallback, then the filename extension, then
    the stored value as-is, then the binary fallback.
    """
    if stored and stored != BINARY_CONTENT_TYPE:
        return stored
    if sniffed and sniffed != BINARY_CONTENT_TYPE:
        return sniffed
    if filename:
        by_extension = type_by_extension(filename)
        if by_extension:
            return by_extension
    if stored:
        return stored
    return BINARY_CONTENT_TYPE


__all__ = [
    "BINARY_CONTENT_TYPE",
    "SNIFF_BYTES",
    "resolve_content_type",
    "sniff_content_type",
    "type_by_extension",
]
