import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from backend.config import QR_BORDER, QR_BOX_SIZE


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_qr_data_url(data: str) -> str:
    """PNG data URL for embedding the session code in an <img> tag."""
    qr_b64 = base64.b64encode(render_qr_png(data)).decode("utf-8")
    return f"data:image/png;base64,{qr_b64}"
