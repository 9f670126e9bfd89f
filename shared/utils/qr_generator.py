"""Utilidades para generar tokens QR de invitados e imágenes QR"""
import hmac
import io
import secrets
from typing import Optional

import qrcode

# 32 bytes -> 43 caracteres url-safe
QR_TOKEN_BYTES = 32


def generate_qr_token() -> str:
    """
    Generar un token QR no adivinable para un invitado

    El token queda ligado al invitado+evento en el ledger; rotarlo
    invalida el anterior.
    """
    return secrets.token_urlsafe(QR_TOKEN_BYTES)


def verify_qr_token(presented: Optional[str], expected: Optional[str]) -> bool:
    """
    Comparar el token presentado contra el vigente en tiempo constante

    Returns:
        True si coinciden
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def render_qr_png(data: str) -> bytes:
    """Generar imagen PNG del QR"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
