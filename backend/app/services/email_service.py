"""
Service d'envoi d'emails SMTP.
Utilisé pour les demandes de rendez-vous, les confirmations (avec QR code),
les refus/annulations, l'envoi des pass et l'avis d'arrivée à l'hôte.

Tous les envois sont best-effort : send_email retourne False en cas d'échec
et n'interrompt jamais l'opération appelante.
"""

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import List, Optional, Tuple

from app.config import settings

logger = logging.getLogger(__name__)

# (nom de fichier, contenu, content-id inline ou None pour une pièce jointe)
Attachment = Tuple[str, bytes, Optional[str]]


def _wrap_html(title: str, body: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: auto;">
        <h2 style="color: #1a73e8;">{title}</h2>
        {body}
        <hr style="border: none; border-top: 1px solid #eee;" />
        <p style="font-size: 12px; color: #888;">
          Ce message est généré automatiquement par VisitPass. Ne pas répondre à cet email.
        </p>
      </body>
    </html>
    """


def _build_message(to_email: str, subject: str, html_content: str,
                   attachments: Optional[List[Attachment]] = None) -> MIMEMultipart:
    msg = MIMEMultipart("related")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject

    html_part = MIMEMultipart("alternative")
    html_part.attach(MIMEText(html_content, "html", "utf-8"))
    msg.attach(html_part)

    for filename, content, content_id in attachments or []:
        if content_id:
            # Image inline référencée par cid:<content_id> dans le HTML
            image = MIMEImage(content, name=filename)
            image.add_header("Content-ID", f"<{content_id}>")
            image.add_header("Content-Disposition", "inline", filename=filename)
            msg.attach(image)
        else:
            part = MIMEApplication(content, Name=filename)
            part.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(part)
    return msg


def send_email(
    to_email: Optional[str],
    subject: str,
    html_content: str,
    attachments: Optional[List[Attachment]] = None,
) -> bool:
    """
    Envoie un email HTML. Retourne True si le serveur SMTP a accepté le message.
    Les erreurs SMTP/réseau sont journalisées et converties en False.
    """
    if not to_email:
        return False
    if not settings.EMAIL_ENABLED:
        logger.info("Envoi email désactivé : '%s' non envoyé à %s", subject, to_email)
        return False

    msg = _build_message(to_email, subject, html_content, attachments)
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT,
                          timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Échec envoi email '%s' à %s : %s", subject, to_email, exc)
        return False

    logger.info("Email '%s' envoyé à %s", subject, to_email)
    return True


# ----------------------------------------------------------------
# Modèles de messages
# ----------------------------------------------------------------

def send_new_appointment_request(host, visitor_name: str, appointment) -> bool:
    """Prévient l'hôte qu'une nouvelle demande de rendez-vous attend sa décision."""
    body = f"""
        <p>Bonjour {host.name},</p>
        <p>Vous avez une nouvelle demande de rendez-vous :</p>
        <ul>
          <li><strong>Visiteur :</strong> {visitor_name}</li>
          <li><strong>Date :</strong> {appointment.appointment_date.strftime('%d/%m/%Y')}</li>
          <li><strong>Heure :</strong> {appointment.appointment_time}</li>
          <li><strong>Objet :</strong> {appointment.purpose}</li>
        </ul>
        <p>Merci d'approuver ou de refuser cette demande.</p>
    """
    return send_email(host.email, "VisitPass : Nouvelle demande de rendez-vous",
                      _wrap_html("Nouvelle demande de rendez-vous", body))


def send_appointment_confirmation(appointment, visitor, host, qr_image_bytes: bytes) -> bool:
    """Confirme le rendez-vous au visiteur, QR code intégré en ligne (Content-ID)."""
    body = f"""
        <p>Bonjour {visitor.name},</p>
        <p>
          Votre rendez-vous avec <strong>{host.name if host else ''}</strong> est confirmé
          le <strong>{appointment.appointment_date.strftime('%d/%m/%Y')}</strong>
          à <strong>{appointment.appointment_time}</strong> ({appointment.location}).
        </p>
        <p>Présentez ce QR code à l'accueil à votre arrivée.</p>
        <div style="text-align: center; margin: 24px 0;">
          <img src="cid:qrcode" alt="QR Code du rendez-vous" style="width: 220px; height: 220px;" />
        </div>
    """
    return send_email(
        visitor.email,
        "VisitPass : Confirmation de rendez-vous",
        _wrap_html("Rendez-vous confirmé", body),
        attachments=[("qrcode.png", qr_image_bytes, "qrcode")],
    )


def send_appointment_rejected(appointment, visitor, host, reason: Optional[str]) -> bool:
    reason_html = f"<p><strong>Motif :</strong> {reason}</p>" if reason else ""
    body = f"""
        <p>Bonjour {visitor.name},</p>
        <p>Votre demande de rendez-vous du {appointment.appointment_date.strftime('%d/%m/%Y')}
        à {appointment.appointment_time} a été refusée.</p>
        {reason_html}
        <p>Contactez {host.name if host else "votre hôte"} pour plus d'informations.</p>
    """
    return send_email(visitor.email, "VisitPass : Rendez-vous refusé",
                      _wrap_html("Rendez-vous refusé", body))


def send_appointment_cancelled(appointment, to_email: Optional[str]) -> bool:
    body = f"""
        <p>Le rendez-vous prévu le {appointment.appointment_date.strftime('%d/%m/%Y')}
        à {appointment.appointment_time} a été annulé.</p>
    """
    return send_email(to_email, "VisitPass : Rendez-vous annulé",
                      _wrap_html("Rendez-vous annulé", body))


def send_pass_details(visitor_pass, visitor, pdf_path: Optional[str]) -> bool:
    """Envoie le pass au visiteur, badge PDF en pièce jointe s'il a pu être généré."""
    attachments: List[Attachment] = []
    if pdf_path and Path(pdf_path).is_file():
        attachments.append((f"{visitor_pass.pass_number}.pdf", Path(pdf_path).read_bytes(), None))

    body = f"""
        <p>Bonjour {visitor.name},</p>
        <p>Votre pass visiteur <strong>{visitor_pass.pass_number}</strong> a été émis.</p>
        <ul>
          <li><strong>Valide du :</strong> {visitor_pass.valid_from.strftime('%d/%m/%Y %H:%M')}</li>
          <li><strong>Valide jusqu'au :</strong> {visitor_pass.valid_until.strftime('%d/%m/%Y %H:%M')}</li>
        </ul>
        <p>Présentez le QR code du pass à l'accueil.</p>
    """
    return send_email(visitor.email, "VisitPass : Votre pass visiteur",
                      _wrap_html("Pass visiteur", body), attachments=attachments)


def send_check_in_notice(host, visitor, check_log) -> bool:
    """Prévient l'hôte que son visiteur vient d'arriver."""
    body = f"""
        <p>Bonjour {host.name},</p>
        <p>Votre visiteur {visitor.name} est arrivé à {check_log.check_in_time.strftime('%H:%M')}.</p>
        <ul>
          <li><strong>Visiteur :</strong> {visitor.name} ({visitor.email or 'N/A'})</li>
          <li><strong>Téléphone :</strong> {visitor.phone or 'N/A'}</li>
          <li><strong>Lieu :</strong> {check_log.location or 'N/A'}</li>
        </ul>
    """
    return send_email(host.email, "VisitPass : Arrivée de votre visiteur",
                      _wrap_html("Visiteur arrivé", body))
