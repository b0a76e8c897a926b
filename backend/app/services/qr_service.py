"""
Génération des QR codes (pass et confirmations de rendez-vous).
Le contenu encodé est un objet JSON ; l'image est produite en PNG en mémoire.
"""

import base64
import io
import json
from typing import Any, Dict

import qrcode


def generate_qr_png(data: str) -> bytes:
    """Génère une image PNG du QR code encodant la chaîne donnée."""
    qr = qrcode.QRCode(version=None, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def encode_payload(payload: Dict[str, Any]) -> str:
    """Sérialise le contenu du QR (UUID et datetime convertis en chaînes)."""
    return json.dumps(payload, default=str, separators=(",", ":"))


def generate_qr_data_uri(payload: Dict[str, Any]) -> str:
    """Retourne le QR code du payload sous forme de data URI (data:image/png;base64,...)."""
    png = generate_qr_png(encode_payload(payload))
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def decode_data_uri(data_uri: str) -> bytes:
    """Inverse de generate_qr_data_uri : retourne les octets PNG."""
    _, _, encoded = data_uri.partition(",")
    return base64.b64decode(encoded)
