import base64
import os
from functools import lru_cache
from io import BytesIO
from typing import Optional
from urllib.parse import urlencode, quote

import qrcode
from qrcode.constants import ERROR_CORRECT_M

UPI_ID = os.environ.get("UPI_ID", "").strip()
UPI_PAYEE_NAME = (os.environ.get("UPI_PAYEE_NAME") or os.environ.get("STORE_NAME") or "TyreFusion").strip()


def format_amount(amount: float) -> str:
    """1500.0 -> "1500", 1499.5 -> "1499.50"."""
    val = round(float(amount or 0), 2)
    if val == int(val):
        return str(int(val))
    return f"{val:.2f}"


def build_upi_uri(amount: float, upi_id: Optional[str] = None, payee: Optional[str] = None, note: Optional[str] = None) -> str:
    params = {
        "pa": (upi_id or UPI_ID).strip(),
        "pn": (payee or UPI_PAYEE_NAME).strip(),
        "am": format_amount(amount),
        "cu": "INR",
    }
    if note:
        params["tn"] = note
    return "upi://pay?" + urlencode(params, quote_via=quote, safe="@")


def qr_png(text: str, box_size: int = 8, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@lru_cache(maxsize=1024)
def qr_png_b64(text: str, box_size: int = 8, border: int = 2) -> str:
    """Base64 (ASCII) PNG for the given text, cached for repeat checkouts."""
    return base64.b64encode(qr_png(text, box_size=box_size, border=border)).decode("ascii")
