from __future__ import annotations

from io import BytesIO


def _png_bytes() -> bytes:
    from PIL import Image

    buf = BytesIO()
    Image.new("RGB", (40, 20), color="white").save(buf, format="PNG")
    return buf.getvalue()


def test_detect_file_kind_prefers_magic_bytes() -> None:
    from slipsafe.modules.extraction.ocr import detect_file_kind

    assert detect_file_kind(filename="slip.txt", content_type=None, body=b"%PDF-1.7\n") == "pdf"
    assert detect_file_kind(filename="slip.pdf", content_type=None, body=_png_bytes()) == "image"
    assert detect_file_kind(filename="x", content_type=None, body=b"BEST BUY\nTOTAL 1") == "text"
    assert (
        detect_file_kind(filename="scan.heic", content_type=None, body=b"\x00\x01\x02") == "image"
    )
    assert detect_file_kind(filename="blob", content_type=None, body=b"\x00\x01\x02") == "unknown"


def test_html_is_flattened_to_lines() -> None:
    from slipsafe.modules.extraction.ocr import decode_text_bytes, html_to_text

    html = "<html><body><style>p{}</style><p>BEST BUY</p>TOTAL&nbsp;1.00<br>Bye</body></html>"
    assert html_to_text(html) == "BEST BUY\nTOTAL 1.00\nBye"
    assert (
        decode_text_bytes(body=html.encode(), filename="mail.html", content_type="text/html")
        == "BEST BUY\nTOTAL 1.00\nBye"
    )


def test_image_goes_through_tesseract(monkeypatch) -> None:
    import pytesseract

    from slipsafe.modules.extraction.ocr import TesseractOcrEngine

    seen = {}

    def fake_image_to_string(image, lang=None):
        seen["size"] = image.size
        seen["lang"] = lang
        return "BEST BUY\nTOTAL 245.99\n"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)
    text = TesseractOcrEngine(lang="eng").extract_text(
        body=_png_bytes(), filename="slip.png", content_type="image/png"
    )
    assert text == "BEST BUY\nTOTAL 245.99\n"
    assert seen == {"size": (40, 20), "lang": "eng"}


def test_missing_tesseract_binary_yields_empty_text(monkeypatch) -> None:
    import pytesseract

    from slipsafe.modules.extraction.ocr import TesseractOcrEngine

    def not_installed(image, lang=None):
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "image_to_string", not_installed)
    assert TesseractOcrEngine().extract_text(
        body=_png_bytes(), filename="slip.png", content_type=None
    ) == ""


def test_corrupt_uploads_never_raise() -> None:
    from slipsafe.modules.extraction.ocr import TesseractOcrEngine

    engine = TesseractOcrEngine()
    assert engine.extract_text(body=b"%PDF-1.4 not really", filename="a.pdf", content_type=None) == ""
    assert (
        engine.extract_text(
            body=b"\x89PNG\r\n\x1a\nbroken", filename="a.png", content_type="image/png"
        )
        == ""
    )
    assert engine.extract_text(body=b"\x00\x01", filename="a.bin", content_type=None) == ""


def test_plain_text_upload_is_decoded() -> None:
    from slipsafe.modules.extraction.ocr import TesseractOcrEngine

    body = "CAFÉ NOIR\nTOTAL €4,50\n".encode()
    text = TesseractOcrEngine().extract_text(body=body, filename="r.txt", content_type="text/plain")
    assert text == "CAFÉ NOIR\nTOTAL €4,50\n"
