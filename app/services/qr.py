"""QR payloads pointing a scanner at the verification endpoint."""

from __future__ import annotations

import base64
import io
import json
from typing import Any

import qrcode

from app.core.errors import ValidationError


def build_payload(
    credential_id: str, public_base_url: str, content_cid: str
) -> dict[str, str]:
    return {
        "credentialId": credential_id,
        "verifyUrl": f"{public_base_url.rstrip('/')}/api/verify/{credential_id}",
        "ipfsHash": content_cid,
    }


def render_png_data_url(payload: dict[str, str]) -> str:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def parse_payload(qr_data: Any) -> str:
    """Return the credential id carried by a scanned payload.

    Accepts the decoded object or its JSON text.
    """
    if isinstance(qr_data, str):
        try:
            qr_data = json.loads(qr_data)
        except ValueError:
            raise ValidationError("Invalid QR code data") from None
    if not isinstance(qr_data, dict):
        raise ValidationError("Invalid QR code data")
    credential_id = qr_data.get("credentialId")
    if not isinstance(credential_id, str) or not credential_id.strip():
        raise ValidationError("Invalid QR code data: missing credentialId")
    return credential_id.strip()
