"""
Service d'envoi de SMS via une passerelle HTTP (API Messages de Twilio ou compatible).

Même contrat que email_service : retourne True/False, ne lève jamais.
"""

import logging
from typing import Optional

import requests

from app.config import settings

logger = logging.getLogger(__name__)


def send_sms(to_number: Optional[str], message: str) -> bool:
    """Envoie un SMS. Retourne False si désactivé, sans numéro ou en cas d'échec HTTP."""
    if not to_number:
        return False
    if not settings.SMS_ENABLED:
        logger.info("Envoi SMS désactivé : message non envoyé à %s", to_number)
        return False

    url = settings.SMS_API_URL.format(account_sid=settings.SMS_ACCOUNT_SID)
    try:
        response = requests.post(
            url,
            data={"To": to_number, "From": settings.SMS_FROM_NUMBER, "Body": message},
            auth=(settings.SMS_ACCOUNT_SID, settings.SMS_AUTH_TOKEN),
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Échec envoi SMS à %s : %s", to_number, exc)
        return False

    logger.info("SMS envoyé à %s", to_number)
    return True


def send_appointment_sms(to_number: Optional[str], date: str, time: str, location: str, host_name: str) -> bool:
    message = (
        f"Votre rendez-vous est confirmé le {date} à {time} avec {host_name}. "
        f"Lieu : {location}."
    )
    return send_sms(to_number, message)
