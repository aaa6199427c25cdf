"""Transactional e-mail (OTP codes, order confirmation, UPI payment pending).

Two providers are supported and picked with ``EMAIL_PROVIDER``:

- ``resend`` (default): Resend HTTP API, key in ``RESEND_API_KEY``.
- ``smtp``: plain SMTP with STARTTLS (``SMTP_HOST``/``SMTP_PORT``,
  credentials in ``EMAIL_USER``/``EMAIL_PASS``).

Every public ``send_*`` helper returns ``(ok, error)`` and never raises, so
callers can run them as background tasks after the response is sent.
"""
import base64
import os
import smtplib
import ssl
from email.message import EmailMessage
from html import escape
from typing import Any, Dict, List, Optional, Tuple

import resend

from .logs import log_event
from .upi import UPI_ID, build_upi_uri, format_amount, qr_png

EMAIL_PROVIDER = os.environ.get("EMAIL_PROVIDER", "resend").strip().lower()
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "").strip()
SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com").strip()
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587").strip() or 587)
EMAIL_USER = os.environ.get("EMAIL_USER", "").strip()
EMAIL_PASS = os.environ.get("EMAIL_PASS", "").strip()
STORE_NAME = os.environ.get("STORE_NAME", "TyreFusion").strip()
EMAIL_FROM = (os.environ.get("EMAIL_FROM") or (f"{STORE_NAME} <{EMAIL_USER}>" if EMAIL_USER else f"{STORE_NAME} <orders@tyrefusion.in>")).strip()
OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "5").strip() or 5)

UPI_QR_CID = "upi_qr_code"

SendResult = Tuple[bool, Optional[str]]


def _send_resend(to: str, subject: str, html: str, text: str, attachments: List[Dict[str, Any]]) -> SendResult:
    if not RESEND_API_KEY:
        return False, "Resend API key is not configured."
    resend.api_key = RESEND_API_KEY
    payload: Dict[str, Any] = {
        "from": EMAIL_FROM,
        "to": [to],
        "subject": subject,
        "html": html,
        "text": text,
    }
    if attachments:
        payload["attachments"] = [
            {
                "filename": a["filename"],
                "content": base64.b64encode(a["content"]).decode("ascii"),
                "content_id": a.get("cid"),
            }
            for a in attachments
        ]
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:  # resend raises its own error hierarchy plus transport errors
        return False, str(exc)
    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)
    return True, None


def _send_smtp(to: str, subject: str, html: str, text: str, attachments: List[Dict[str, Any]]) -> SendResult:
    if not EMAIL_USER or not EMAIL_PASS:
        return False, "SMTP credentials are not configured."
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM
    msg["To"] = to
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")
    html_part = msg.get_payload()[-1]
    for a in attachments:
        html_part.add_related(a["content"], maintype="image", subtype="png", cid=f"<{a['cid']}>", filename=a["filename"])
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30) as server:
            server.starttls(context=ssl.create_default_context())
            server.login(EMAIL_USER, EMAIL_PASS)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)
    return True, None


def send_email(to: str, subject: str, html: str, text: str, attachments: Optional[List[Dict[str, Any]]] = None) -> SendResult:
    if not to:
        return False, "missing recipient"
    sender = _send_smtp if EMAIL_PROVIDER == "smtp" else _send_resend
    ok, error = sender(to, subject, html, text, attachments or [])
    log_event("mailer", provider=EMAIL_PROVIDER, to=to, subject=subject, ok=ok, error=error)
    return ok, error


def customer_name(order: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> str:
    ship = order.get("shippingAddress") or {}
    user = user or {}
    return ship.get("fullName") or user.get("name") or user.get("email") or "Customer"


# ---------- OTP ----------
def build_otp_email_html(otp: str) -> str:
    return f"""
<div style="font-family: Arial, sans-serif;">
  <h2>{escape(STORE_NAME)} Login OTP</h2>
  <p>Your OTP is:</p>
  <h1 style="letter-spacing: 4px;">{escape(otp)}</h1>
  <p>This OTP is valid for <strong>{OTP_TTL_MINUTES} minutes</strong>.</p>
  <p>If you did not request this, please ignore.</p>
</div>"""


def send_otp_email(to: str, otp: str) -> SendResult:
    text = f"Your {STORE_NAME} OTP is {otp}. It is valid for {OTP_TTL_MINUTES} minutes."
    return send_email(to, f"Your {STORE_NAME} OTP", build_otp_email_html(otp), text)


# ---------- Orders ----------
def _items_html(order: Dict[str, Any]) -> str:
    rows = []
    for it in order.get("items") or []:
        tyre = it.get("tyre") or {}
        line_total = float(it.get("price") or 0) * int(it.get("quantity") or 0)
        rows.append(
            f"""
      <tr>
        <td style="padding:6px 0;">
          {escape(str(tyre.get("brand") or ""))} {escape(str(tyre.get("title") or ""))}<br/>
          <small>Size: {escape(str(tyre.get("size") or ""))}</small>
        </td>
        <td align="center">{int(it.get("quantity") or 0)}</td>
        <td align="right">&#8377;{format_amount(line_total)}</td>
      </tr>"""
        )
    return "".join(rows)


def _address_html(order: Dict[str, Any]) -> str:
    ship = {k: escape(str(v or "")) for k, v in (order.get("shippingAddress") or {}).items()}
    return (
        f"{ship.get('fullName', '')}<br/>{ship.get('address', '')}<br/>"
        f"{ship.get('city', '')}, {ship.get('state', '')} - {ship.get('pincode', '')}<br/>"
        f"Phone: {ship.get('phone', '')}"
    )


def build_order_confirmation(order: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> Tuple[str, str, List[Dict[str, Any]]]:
    """Return (html, text, attachments). UPI orders carry the payment QR inline."""
    name = escape(customer_name(order, user))
    total = format_amount(order.get("totalAmount") or 0)
    attachments: List[Dict[str, Any]] = []
    upi_html = ""
    if order.get("paymentMode") == "UPI":
        uri = build_upi_uri(order.get("totalAmount") or 0)
        attachments.append({"filename": "upi-qr.png", "content": qr_png(uri), "cid": UPI_QR_CID})
        upi_html = f"""
  <hr style="margin:20px 0;" />
  <h3>UPI Payment</h3>
  <p>Please scan the QR code below and pay <b>&#8377;{total}</b>.</p>
  <p><b>UPI ID:</b> {escape(UPI_ID)}</p>
  <img src="cid:{UPI_QR_CID}" alt="UPI QR Code" style="width:220px;height:220px;margin-top:10px;" />
  <p style="margin-top:10px;color:#555;">After payment, our team will manually verify and update your order status.</p>"""

    html = f"""
<div style="font-family:Arial,sans-serif;color:#333;">
  <h2>{escape(STORE_NAME)} Order Confirmation</h2>
  <p>Hello <b>{name}</b>,</p>
  <p>Thank you for your order. Below are your details:</p>
  <p>
    <b>Order ID:</b> {escape(str(order.get("id")))}<br/>
    <b>Payment Mode:</b> {escape(str(order.get("paymentMode")))}<br/>
    <b>Payment Status:</b> {escape(str(order.get("paymentStatus")))}
  </p>
  <table width="100%" cellspacing="0" cellpadding="0">
    <thead>
      <tr><th align="left">Item</th><th align="center">Qty</th><th align="right">Price</th></tr>
    </thead>
    <tbody>{_items_html(order)}
    </tbody>
  </table>
  <p style="margin-top:10px;"><b>Total Amount:</b> &#8377;{total}</p>
  {upi_html}
  <hr style="margin:20px 0;" />
  <h4>Shipping Address</h4>
  <p>{_address_html(order)}</p>
  <p style="margin-top:20px;">Team <b>{escape(STORE_NAME)}</b></p>
</div>"""
    text = (
        f"Hello {customer_name(order, user)},\n"
        f"Thank you for your order {order.get('id')}.\n"
        f"Payment: {order.get('paymentMode')} ({order.get('paymentStatus')}).\n"
        f"Total: INR {total}.\n\n"
        f"Team {STORE_NAME}"
    )
    return html, text, attachments


def send_order_confirmation_email(to: str, order: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> SendResult:
    html, text, attachments = build_order_confirmation(order, user)
    return send_email(to, f"{STORE_NAME} Order Confirmation - {order.get('id')}", html, text, attachments)


def build_upi_pending(order: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
    name = escape(customer_name(order, user))
    total = format_amount(order.get("totalAmount") or 0)
    html = f"""
<div style="font-family: Arial, sans-serif; color:#333;">
  <h2 style="color:#f97316;">UPI Payment Pending</h2>
  <p>Hello <b>{name}</b>,</p>
  <p>Your order <b>{escape(str(order.get("id")))}</b> has been placed successfully.</p>
  <p>Please complete the payment using the <b>UPI QR code shown on the checkout page</b>.</p>
  <p>Once the payment is verified, you will receive a final order confirmation email.</p>
  <p style="margin-top:10px;"><b>Total Amount:</b> &#8377;{total}</p>
  <hr style="margin:20px 0;" />
  <p style="font-size:13px;color:#666;">If you have already completed the payment, please ignore this message.</p>
  <p style="margin-top:20px;">Team <b>{escape(STORE_NAME)}</b></p>
</div>"""
    text = (
        f"Hello {customer_name(order, user)},\n"
        f"Your order {order.get('id')} is waiting for UPI payment of INR {total}.\n"
        "You will receive a confirmation once the payment is verified."
    )
    return html, text


def send_upi_pending_email(to: str, order: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> SendResult:
    html, text = build_upi_pending(order, user)
    return send_email(to, f"{STORE_NAME} - UPI Payment Pending", html, text)
