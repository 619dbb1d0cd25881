"""
OCR seam.

``OcrEngine.extract_text`` turns an uploaded slip (PDF, image, text or HTML)
into plain text. It never raises: any failure yields ``""`` so the extractor
degrades to low confidence instead of failing the upload.
"""

from __future__ import annotations

import codecs
import re
import time
from html import unescape
from io import BytesIO
from typing import Protocol

import pytesseract
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from slipsafe.core.config import settings
from slipsafe.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".heic")
_TEXT_SUFFIXES = (".txt", ".html", ".htm", ".eml")


class OcrEngine(Protocol):
    def extract_text(self, *, body: bytes, filename: str, content_type: str | None) -> str: ...


class TesseractOcrEngine:
    def __init__(self, *, lang: str | None = None) -> None:
        self._lang = lang or settings.tesseract_lang

    def extract_text(self, *, body: bytes, filename: str, content_type: str | None) -> str:
        start = time.monotonic()
        kind = detect_file_kind(filename=filename, content_type=content_type, body=body)
        try:
            if kind == "pdf":
                text = self._pdf_text(body)
            elif kind == "image":
                text = self._image_text(body)
            elif kind == "text":
                text = decode_text_bytes(body=body, filename=filename, content_type=content_type)
            else:
                text = ""
        except (
            PyPdfError,
            UnidentifiedImageError,
            pytesseract.TesseractError,
            NotImplementedError,
            OSError,
            ValueError,
        ):
            log_exception(logger, "ocr.failure", filename=filename, file_kind=kind)
            return ""
        text = text.replace("\u202f", " ").replace("\xa0", " ")
        log_event(
            logger,
            "ocr.done",
            filename=filename,
            file_kind=kind,
            text_chars=len(text),
            duration_ms=monotonic_ms(start),
        )
        return text

    def _pdf_text(self, body: bytes) -> str:
        reader = PdfReader(BytesIO(body))
        pages: list[str] = []
        for page in reader.pages:
            text = page.extract_text() or ""
            if not text.strip():
                text = self._pdf_page_ocr(page)
            pages.append(text)
        return "\n".join(pages)

    def _pdf_page_ocr(self, page) -> str:
        # Scanned PDFs carry the slip as one embedded image; OCR the largest.
        best_image = None
        best_area = 0
        for image_file in page.images:
            image = image_file.image
            if image is None:
                continue
            area = image.width * image.height
            if area > best_area:
                best_area = area
                best_image = image
        if best_image is None:
            return ""
        return self._tesseract(best_image)

    def _image_text(self, body: bytes) -> str:
        with Image.open(BytesIO(body)) as image:
            return self._tesseract(image)

    def _tesseract(self, image: Image.Image) -> str:
        if image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        try:
            return pytesseract.image_to_string(image, lang=self._lang) or ""
        except pytesseract.TesseractNotFoundError:
            log_event(logger, "ocr.engine_unavailable", engine="tesseract")
            return ""


_engine: OcrEngine | None = None


def get_ocr_engine() -> OcrEngine:
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = TesseractOcrEngine()
    return _engine


def set_ocr_engine(engine: OcrEngine | None) -> None:
    global _engine  # noqa: PLW0603
    _engine = engine


def detect_file_kind(*, filename: str, content_type: str | None, body: bytes) -> str:
    if _looks_like_pdf_bytes(body):
        return "pdf"
    if _looks_like_image_bytes(body):
        return "image"
    if _looks_like_text_bytes(body):
        return "text"

    name = filename.lower()
    ctype = (content_type or "").lower()
    if ctype.startswith("image/") or name.endswith(_IMAGE_SUFFIXES):
        return "image"
    if ctype.startswith("text/") or name.endswith(_TEXT_SUFFIXES):
        return "text"
    return "unknown"


def decode_text_bytes(*, body: bytes, filename: str, content_type: str | None) -> str:
    ctype = (content_type or "").lower()
    is_html = ctype.startswith("text/html") or filename.lower().endswith((".html", ".htm"))
    text = body.decode("utf-8", errors="replace")
    if is_html or _looks_like_html(text):
        text = html_to_text(text)
    return text


def html_to_text(html: str) -> str:
    html = re.sub(r"(?is)<(script|style).*?>.*?</\1>", "", html)
    html = re.sub(r"(?i)<br\s*/?>", "\n", html)
    html = re.sub(r"(?i)</p\s*>", "\n\n", html)
    html = re.sub(r"(?i)</(div|tr|li|h[1-6])\s*>", "\n", html)
    html = re.sub(r"(?s)<[^>]+>", "", html)
    html = unescape(html)
    lines = [re.sub(r"\s+", " ", ln).strip() for ln in html.splitlines()]
    return "\n".join([ln for ln in lines if ln])


def _looks_like_html(text: str) -> bool:
    t = (text or "").lstrip().lower()
    if not t:
        return False
    if t.startswith("<!doctype html") or t.startswith("<html"):
        return True
    return bool(re.search(r"<(html|body|div|p|br|table|tr|td|span)(\s|>)", t[:2000]))


def _looks_like_pdf_bytes(body: bytes) -> bool:
    b = body.lstrip()
    if b.startswith(b"\xef\xbb\xbf"):
        b = b[3:].lstrip()
    return b.startswith(b"%PDF")


def _looks_like_image_bytes(body: bytes) -> bool:
    b = body.lstrip()
    return (
        b.startswith(b"\x89PNG\r\n\x1a\n")
        or b.startswith(b"\xff\xd8\xff")
        or b.startswith(b"II*\x00")
        or b.startswith(b"MM\x00*")
        or b.startswith(b"BM")
        or b.startswith((b"GIF87a", b"GIF89a"))
        or (len(b) >= 12 and b.startswith(b"RIFF") and b[8:12] == b"WEBP")
    )


def _looks_like_text_bytes(body: bytes) -> bool:
    sample = body[:4096]
    if not sample or b"\x00" in sample:
        return False
    stripped = sample.lstrip()
    if stripped.startswith(b"\xef\xbb\xbf"):
        stripped = stripped[3:]
    try:
        # A 4 KiB sample may split a multi-byte character at the end.
        codecs.getincrementaldecoder("utf-8")().decode(stripped, final=False)
    except UnicodeDecodeError:
        return False
    control = sum(1 for ch in stripped if ch < 32 and ch not in {9, 10, 13})
    return (control / max(1, len(stripped))) <= 0.02
