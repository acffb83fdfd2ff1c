# utils/qr.py
from __future__ import annotations

import base64
from io import BytesIO
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_H

QR_WIDTH_PX = 300
DATA_URL_PREFIX = "data:image/png;base64,"


def build_verification_url(base_url: str, driver_id, name: str, email: str) -> str:
    """{base}/verify-driver/{id}?name=..&email=.. (values percent-encoded like encodeURIComponent)."""
    base = (base_url or "").rstrip("/")
    safe = "-_.!~*'()"
    return (
        f"{base}/verify-driver/{driver_id}"
        f"?name={quote(name or '', safe=safe)}&email={quote(email or '', safe=safe)}"
    )


def qr_png_bytes(payload: str, *, width: int = QR_WIDTH_PX) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    out = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    out = out.resize((width, width))

    bio = BytesIO()
    out.save(bio, format="PNG", optimize=True)
    return bio.getvalue()


def qr_data_url(payload: str, *, width: int = QR_WIDTH_PX) -> str:
    return DATA_URL_PREFIX + base64.b64encode(qr_png_bytes(payload, width=width)).decode("ascii")


def is_verification_qr(data_url: str | None) -> bool:
    return bool(data_url) and data_url.startswith(DATA_URL_PREFIX)
