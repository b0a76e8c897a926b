"""
Service de vérification des pass (scan QR au poste de sécurité).

Étapes :
  1. Normaliser la valeur reçue en un identifiant texte
  2. Si c'est un UUID de rendez-vous : pass actif du rendez-vous, sinon émission automatique
  3. Sinon (ou à défaut) : recherche exacte par numéro de pass
  4. Contrôles dans l'ordre : statut actif → fenêtre de validité (bornes incluses)
     → visiteur non blacklisté (relu au moment de la vérification)
  5. Retourner le pass et la photo du visiteur en chemin servable
"""

import json
import logging
import re
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.database import utcnow
from app.exceptions import (
    InvalidVerificationInput,
    PassNotActive,
    PassNotFound,
    PassOutsideValidWindow,
    ServiceError,
    VisitorBlacklisted,
)
from app.models.appointment import Appointment
from app.models.visitor import Visitor
from app.models.visitor_pass import Pass
from app.schemas.visitor_pass import PassResponse, StructuredReference, VerificationResponse
from app.security import Actor
from app.services import pass_service

logger = logging.getLogger(__name__)

# Ordre de priorité des clés d'une référence structurée
REFERENCE_KEYS = ("$oid", "_id", "hexString", "passNumber", "appointmentId")

# Chemins absolus du système de fichiers : jamais servables
_FS_ABSOLUTE = re.compile(r"^([a-zA-Z]:[\\/]|\\|/(var|tmp|home|root|usr|etc|opt|srv|mnt)/)")


def normalize_verification_input(value: Any) -> str:
    """
    Ramène une valeur de vérification à une chaîne : numéro de pass ou identifiant.

    Accepte une chaîne, un nombre, une StructuredReference, un dict équivalent
    ou une chaîne contenant le JSON d'un QR code. Lève InvalidVerificationInput sinon.
    """
    if value is None or isinstance(value, bool):
        raise InvalidVerificationInput()

    if isinstance(value, (int, float)):
        return str(value)

    if isinstance(value, str):
        text = value.strip()
        if not text or text == "[object Object]":
            raise InvalidVerificationInput()
        if text.startswith("{"):
            # Contenu brut d'un QR code
            try:
                decoded = json.loads(text)
            except ValueError:
                raise InvalidVerificationInput()
            if not isinstance(decoded, dict):
                raise InvalidVerificationInput()
            return normalize_verification_input(decoded)
        return text

    if isinstance(value, StructuredReference):
        value = value.model_dump(by_alias=True, exclude_none=True)

    if isinstance(value, Mapping):
        for key in REFERENCE_KEYS:
            candidate = value.get(key)
            if candidate is None or candidate == "":
                continue
            return normalize_verification_input(candidate)
        raise InvalidVerificationInput()

    # Objet quelconque (UUID, ...) : sa représentation texte, jamais un repr de mapping
    text = str(value).strip()
    if not text or text == "[object Object]" or text.startswith("{"):
        raise InvalidVerificationInput()
    return text


def normalize_photo_path(photo: Optional[str]) -> Optional[str]:
    """
    Chemin de photo servable par le frontend :
    URL absolue conservée, chemin système rejeté (None), sinon préfixé par /uploads/.
    """
    if not photo:
        return None
    rel = str(photo).strip()
    if not rel:
        return None
    if re.match(r"^https?://", rel, re.IGNORECASE):
        return rel
    if _FS_ABSOLUTE.match(rel):
        return None
    rel = rel.replace("\\", "/").lstrip("/")
    if rel.startswith("uploads/"):
        return "/" + rel
    return "/uploads/" + rel


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _resolve_pass(db: Session, value: str, actor: Optional[Actor]) -> Optional[Pass]:
    entity_id = _as_uuid(value)
    if entity_id is not None:
        appointment = db.get(Appointment, entity_id)
        if appointment is not None and appointment.status != "approved":
            # Pas d'émission automatique hors rendez-vous approuvé
            existing = pass_service.find_active_pass_for_appointment(db, appointment.id)
            if existing is not None:
                return existing
        elif appointment is not None:
            try:
                visitor_pass, created = pass_service.find_or_issue_for_appointment(
                    db, appointment, issued_by=actor.id if actor else None
                )
                if created:
                    logger.info("Pass %s émis à la vérification du rendez-vous %s",
                                visitor_pass.pass_number, appointment.id)
                return visitor_pass
            except ServiceError as exc:
                # Émission impossible : on tente quand même la recherche par numéro
                logger.warning("Émission automatique impossible pour le rendez-vous %s : %s",
                               appointment.id, exc.message)

    return db.execute(select(Pass).where(Pass.pass_number == value)).scalars().first()


def verify_pass(
    db: Session,
    raw_value: Any,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> VerificationResponse:
    """
    Vérifie un pass à partir de la valeur scannée.

    Lève InvalidVerificationInput, PassNotFound, PassNotActive,
    PassOutsideValidWindow ou VisitorBlacklisted. Un pass valide n'est jamais modifié.
    """
    value = normalize_verification_input(raw_value)
    visitor_pass = _resolve_pass(db, value, actor)
    if visitor_pass is None:
        raise PassNotFound()

    if visitor_pass.status != "active":
        raise PassNotActive(visitor_pass.status)

    now = now or utcnow()
    if now < visitor_pass.valid_from or now > visitor_pass.valid_until:
        raise PassOutsideValidWindow()

    # Relu ici : la liste noire a pu changer depuis l'émission
    is_blacklisted = db.execute(
        select(Visitor.is_blacklisted).where(Visitor.id == visitor_pass.visitor_id)
    ).scalar()
    if is_blacklisted:
        raise VisitorBlacklisted()

    appointment_photo = None
    if visitor_pass.appointment_id:
        appointment_photo = db.execute(
            select(Appointment.visitor_photo).where(Appointment.id == visitor_pass.appointment_id)
        ).scalar()
    visitor_photo = normalize_photo_path(appointment_photo) or normalize_photo_path(
        visitor_pass.visitor.photo if visitor_pass.visitor else None
    )

    logger.info("Pass %s vérifié", visitor_pass.pass_number)
    return VerificationResponse(
        valid=True,
        visitor_pass=PassResponse.model_validate(visitor_pass),
        visitor_photo=visitor_photo,
    )
