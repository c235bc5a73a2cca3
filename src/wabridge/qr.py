from __future__ import annotations

import base64

import qrcode
from qrcode.image.svg import SvgPathImage


def render_qr_data_url(payload: str) -> str:
    """Render a pairing payload as an embeddable `data:` URL (SVG)."""

    if not payload:
        raise ValueError("empty pairing payload")
    qr = qrcode.QRCode(border=2, box_size=10, image_factory=SvgPathImage)
    qr.add_data(payload)
    qr.make(fit=True)
    svg = qr.make_image().to_string()
    if isinstance(svg, str):
        svg = svg.encode("utf-8")
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")
