"""Claim code, PIN and QR generation."""

from __future__ import annotations

import base64
import secrets
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M

# No 0/O or 1/I/L: codes are read aloud and typed at a till.
CLAIM_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CLAIM_CODE_LENGTH = 8
PIN_LENGTH = 6


def generate_claim_code() -> str:
    return "".join(secrets.choice(CLAIM_CODE_ALPHABET) for _ in range(CLAIM_CODE_LENGTH))


def generate_pin() -> str:
    return f"{secrets.randbelow(10**PIN_LENGTH):0{PIN_LENGTH}d}"


def normalize_claim_code(code: str) -> str:
    return "".join((code or "").split()).upper()


def encode_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=8, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(data: str) -> str:
    encoded = base64.b64encode(encode_qr_png(data)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
