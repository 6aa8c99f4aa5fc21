"""TOTP (RFC 6238) helpers for the authenticator-app second factor.

Codes are 6 digits on a 30 second step; verification accepts one step of
clock drift either side.
"""

import base64
import logging
from io import BytesIO

import pyotp
import qrcode

logger = logging.getLogger(__name__)

VALID_WINDOW = 1


def generate_secret() -> str:
    # 32 chars base32
    return pyotp.random_base32(length=32)


def build_enrollment_uri(account: str, secret: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=account, issuer_name=issuer)


def render_qr_data_url(uri: str) -> str:
    """Render the otpauth URI as a PNG data URL (empty string on failure)."""
    try:
        img = qrcode.make(uri)
        buf = BytesIO()
        img.save(buf, "PNG")
        return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
    except Exception:
        logger.exception("QR code rendering failed")
        return ""


def verify_code(code: str, secret: str) -> bool:
    if not code or not secret:
        return False
    code = code.strip().replace(" ", "")
    if len(code) != 6 or not code.isdigit():
        return False
    try:
        return pyotp.TOTP(secret).verify(code, valid_window=VALID_WINDOW)
    except Exception:
        # bad base32 in the secret etc. looks like a wrong code to the caller
        logger.warning("TOTP verification error", exc_info=True)
        return False
