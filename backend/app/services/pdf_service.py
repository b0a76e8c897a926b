"""
Génération du badge PDF d'un pass visiteur (reportlab).

Le badge reprend le numéro de pass, l'identité du visiteur, la fenêtre de validité,
l'hôte, le QR code et la photo du visiteur si elle est disponible sur disque
(photo du rendez-vous en priorité, comme à la vérification).
Tout échec est levé en DependencyFailure, attrapée par pass_service (best-effort).
"""

import io
import logging
from pathlib import Path
from typing import Optional

from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer

from app.config import settings
from app.exceptions import DependencyFailure
from app.services.qr_service import decode_data_uri

logger = logging.getLogger(__name__)

# Format badge : 400 x 600 points
BADGE_SIZE = (400, 600)


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(name="BadgeTitle", parent=styles["Heading1"], fontSize=20, alignment=1))
    styles.add(ParagraphStyle(name="BadgeNumber", parent=styles["Heading2"], fontSize=16, alignment=1))
    styles.add(ParagraphStyle(name="BadgeLine", parent=styles["Normal"], fontSize=10, spaceAfter=2))
    return styles


def _local_photo(photo: Optional[str]) -> Optional[Path]:
    """Résout une photo stockée sous UPLOADS_DIR ; None si absente ou distante."""
    if not photo or photo.startswith(("http://", "https://")):
        return None
    relative = photo.lstrip("/")
    if relative.startswith("uploads/"):
        relative = relative[len("uploads/"):]
    candidate = Path(settings.UPLOADS_DIR) / relative
    return candidate if candidate.is_file() else None


def _badge_photo(visitor_pass) -> Optional[Path]:
    appointment = visitor_pass.appointment
    visitor = visitor_pass.visitor
    return _local_photo(appointment.visitor_photo if appointment else None) or _local_photo(
        visitor.photo if visitor else None
    )


def render_pass_document(visitor_pass, qr_data_uri: Optional[str]) -> str:
    """
    Écrit le badge dans PASS_PDF_DIR/<pass_number>.pdf et retourne son chemin.
    Lève DependencyFailure si le badge ne peut pas être produit.
    """
    try:
        return _build_document(visitor_pass, qr_data_uri)
    except Exception as exc:
        raise DependencyFailure(
            f"Badge PDF non généré pour le pass {visitor_pass.pass_number} : {exc}",
            code="PASS_DOCUMENT_FAILED",
        ) from exc


def _build_document(visitor_pass, qr_data_uri: Optional[str]) -> str:
    output_dir = Path(settings.PASS_PDF_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)
    pdf_path = output_dir / f"{visitor_pass.pass_number}.pdf"

    styles = _styles()
    doc = SimpleDocTemplate(
        str(pdf_path),
        pagesize=BADGE_SIZE,
        leftMargin=10 * mm,
        rightMargin=10 * mm,
        topMargin=10 * mm,
        bottomMargin=10 * mm,
    )

    visitor = visitor_pass.visitor
    host = visitor_pass.host
    elements = [
        Paragraph("Pass visiteur", styles["BadgeTitle"]),
        Paragraph(visitor_pass.pass_number, styles["BadgeNumber"]),
        Spacer(1, 4 * mm),
    ]

    photo_path = _badge_photo(visitor_pass)
    if photo_path:
        elements.append(Image(str(photo_path), width=40 * mm, height=40 * mm))
        elements.append(Spacer(1, 3 * mm))

    elements.extend([
        Paragraph(f"<b>Visiteur :</b> {visitor.name if visitor else 'Visiteur'}", styles["BadgeLine"]),
        Paragraph(f"<b>Société :</b> {(visitor.company if visitor else None) or 'N/A'}", styles["BadgeLine"]),
        Paragraph(f"<b>Hôte :</b> {host.name if host else 'N/A'}", styles["BadgeLine"]),
        Paragraph(f"<b>Valide du :</b> {visitor_pass.valid_from.strftime('%d/%m/%Y %H:%M')}", styles["BadgeLine"]),
        Paragraph(f"<b>Jusqu'au :</b> {visitor_pass.valid_until.strftime('%d/%m/%Y %H:%M')}", styles["BadgeLine"]),
    ])
    if visitor_pass.access_areas:
        elements.append(Paragraph(f"<b>Zones :</b> {', '.join(visitor_pass.access_areas)}", styles["BadgeLine"]))

    if qr_data_uri:
        elements.append(Spacer(1, 4 * mm))
        elements.append(Image(io.BytesIO(decode_data_uri(qr_data_uri)), width=45 * mm, height=45 * mm))

    doc.build(elements)
    logger.info("Badge PDF généré : %s", pdf_path)
    return str(pdf_path)
