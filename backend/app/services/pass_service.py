"""
Service d'émission et de gestion des pass visiteurs.

Émission (issue_pass) :
  1. Charger le rendez-vous s'il est fourni
  2. Résoudre le visiteur : rendez-vous → visitor_id explicite → profil lié à l'acteur
  3. Résoudre l'hôte : host_id explicite → hôte du rendez-vous
  4. Refuser un visiteur sur liste noire (aucun pass créé)
  5. Réutiliser le pass actif du rendez-vous s'il existe (au plus un pass actif par rendez-vous)
  6. Calculer la fenêtre de validité et générer un numéro de pass unique
  7. Après insertion : QR code, badge PDF, envoi email/SMS (best-effort)

Courses acceptées : deux émissions simultanées pour le même rendez-vous peuvent
passer la vérification de l'étape 5 ; l'index partiel uq_passes_active_appointment
rejette la seconde insertion et on retourne alors le pass gagnant. Une collision
de numéro qui atteint la contrainte unique est retentée PASS_NUMBER_MAX_ATTEMPTS fois.
"""

import logging
import math
import secrets
import uuid
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import utcnow
from app.exceptions import (
    ConflictError,
    DependencyFailure,
    InvalidTransition,
    MissingHost,
    MissingVisitor,
    NotFoundError,
    PassNotFound,
    ValidationError,
    VisitorBlacklisted,
)
from app.models.appointment import Appointment
from app.models.visitor import Visitor
from app.models.visitor_pass import Pass
from app.schemas.visitor_pass import (
    PassDelivery,
    PassIssue,
    PassIssueResponse,
    PassListResponse,
    PassResponse,
    PassStats,
)
from app.security import Actor
from app.services import email_service, pdf_service, qr_service, sms_service

logger = logging.getLogger(__name__)

PASS_PREFIX = "VP"


# ----------------------------------------------------------------
# Règles pures
# ----------------------------------------------------------------

def compute_validity_window(
    appointment_date: datetime,
    duration: Optional[int] = None,
    buffer_minutes: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    """
    Fenêtre d'un pass dérivé d'un rendez-vous :
    [début − buffer, début + durée + buffer]. Buffer par défaut : PASS_BUFFER_MINUTES (30).
    """
    buffer = settings.PASS_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes
    minutes = duration or settings.DEFAULT_APPOINTMENT_DURATION
    valid_from = appointment_date - timedelta(minutes=buffer)
    valid_until = appointment_date + timedelta(minutes=minutes + buffer)
    return valid_from, valid_until


def _random_digits(width: int) -> str:
    return f"{secrets.randbelow(10 ** width):0{width}d}"


def generate_pass_number(db: Session, today: Optional[date] = None) -> str:
    """
    Numéro de pass : VP + AAMMJJ + 4 chiffres aléatoires.
    En cas de collision avec un numéro existant, on régénère une seule fois avec 5 chiffres.
    """
    prefix = PASS_PREFIX + (today or utcnow().date()).strftime("%y%m%d")
    candidate = prefix + _random_digits(4)
    taken = db.execute(select(Pass.id).where(Pass.pass_number == candidate)).first()
    if taken is None:
        return candidate
    return prefix + _random_digits(5)


def build_qr_payload(visitor_pass: Pass, visitor: Optional[Visitor]) -> dict:
    """Contenu JSON encodé dans le QR code du pass."""
    return {
        "passNumber": visitor_pass.pass_number,
        "visitorId": str(visitor_pass.visitor_id),
        "visitorName": visitor.name if visitor else "Visiteur",
        "validFrom": visitor_pass.valid_from.isoformat(),
        "validUntil": visitor_pass.valid_until.isoformat(),
        "appointmentId": str(visitor_pass.appointment_id) if visitor_pass.appointment_id else None,
        "issuedBy": str(visitor_pass.issued_by) if visitor_pass.issued_by else None,
    }


# ----------------------------------------------------------------
# Persistance
# ----------------------------------------------------------------

def find_active_pass_for_appointment(db: Session, appointment_id: uuid.UUID) -> Optional[Pass]:
    return db.execute(
        select(Pass)
        .where(Pass.appointment_id == appointment_id, Pass.status == "active")
        .order_by(Pass.created_at.desc())
    ).scalars().first()


def _persist_pass(db: Session, **fields) -> Tuple[Pass, bool]:
    """
    Insère un pass actif. Retourne (pass, créé).
    Si l'index partiel signale qu'un autre pass actif existe déjà pour le rendez-vous,
    retourne ce pass avec créé=False.
    """
    appointment_id = fields.get("appointment_id")

    for attempt in range(1, settings.PASS_NUMBER_MAX_ATTEMPTS + 1):
        visitor_pass = Pass(pass_number=generate_pass_number(db), status="active", **fields)
        db.add(visitor_pass)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if appointment_id is not None:
                winner = find_active_pass_for_appointment(db, appointment_id)
                if winner is not None:
                    logger.info(
                        "Émission concurrente pour le rendez-vous %s : pass %s conservé",
                        appointment_id, winner.pass_number,
                    )
                    return winner, False
            logger.warning("Collision de numéro de pass (essai %d), nouvel essai", attempt)
            continue
        db.refresh(visitor_pass)
        return visitor_pass, True

    raise ConflictError(
        "Impossible de générer un numéro de pass unique, veuillez réessayer.",
        code="PASS_NUMBER_COLLISION",
    )


def _attach_artifacts(db: Session, visitor_pass: Pass, visitor: Optional[Visitor]) -> bool:
    """
    Génère le QR code puis le badge PDF et les enregistre sur le pass.
    Retourne True si le badge a été produit. Aucun échec n'annule le pass.
    """
    try:
        visitor_pass.qr_code = qr_service.generate_qr_data_uri(build_qr_payload(visitor_pass, visitor))
    except Exception as exc:
        logger.warning("QR code non généré pour le pass %s : %s", visitor_pass.pass_number, exc)

    document_generated = False
    try:
        visitor_pass.pdf_path = pdf_service.render_pass_document(visitor_pass, visitor_pass.qr_code)
        document_generated = True
    except DependencyFailure as exc:
        logger.warning("%s", exc.message)

    db.commit()
    db.refresh(visitor_pass)
    return document_generated


def _deliver_to_visitor(visitor_pass: Pass, visitor: Visitor, delivery: PassDelivery) -> None:
    """Envoi du pass au visiteur par email et SMS (best-effort)."""
    delivery.email_sent = email_service.send_pass_details(visitor_pass, visitor, visitor_pass.pdf_path)
    delivery.sms_sent = sms_service.send_sms(
        visitor.phone,
        f"Votre pass visiteur {visitor_pass.pass_number} est valide du "
        f"{visitor_pass.valid_from.strftime('%d/%m/%Y %H:%M')} au "
        f"{visitor_pass.valid_until.strftime('%d/%m/%Y %H:%M')}.",
    )


def _load_eligible_visitor(db: Session, visitor_id: uuid.UUID) -> Visitor:
    visitor = db.get(Visitor, visitor_id)
    if visitor is None:
        raise NotFoundError("Visiteur introuvable.", code="VISITOR_NOT_FOUND")
    if visitor.is_blacklisted:
        raise VisitorBlacklisted("Impossible d'émettre un pass pour un visiteur sur liste noire.")
    return visitor


# ----------------------------------------------------------------
# Opérations
# ----------------------------------------------------------------

def find_or_issue_for_appointment(
    db: Session,
    appointment: Appointment,
    issued_by: Optional[uuid.UUID] = None,
) -> Tuple[Pass, bool]:
    """
    Retourne le pass actif du rendez-vous, ou en émet un avec la fenêtre calculée.
    Utilisé par l'approbation et par la vérification. Retourne (pass, créé).

    Lève MissingVisitor pour un rendez-vous invité (aucun visiteur lié)
    et VisitorBlacklisted si le visiteur est sur liste noire.
    """
    existing = find_active_pass_for_appointment(db, appointment.id)
    if existing is not None:
        return existing, False

    if appointment.visitor_id is None:
        raise MissingVisitor("Rendez-vous sans visiteur : impossible d'émettre un pass.")
    visitor = _load_eligible_visitor(db, appointment.visitor_id)

    valid_from, valid_until = compute_validity_window(appointment.appointment_date, appointment.duration)
    visitor_pass, created = _persist_pass(
        db,
        visitor_id=visitor.id,
        appointment_id=appointment.id,
        issued_by=issued_by,
        host_id=appointment.host_id,
        valid_from=valid_from,
        valid_until=valid_until,
        access_areas=[],
        special_instructions="",
    )
    if created:
        _attach_artifacts(db, visitor_pass, visitor)
        logger.info(
            "Pass %s émis automatiquement pour le rendez-vous %s",
            visitor_pass.pass_number, appointment.id,
        )
    return visitor_pass, created


def issue_pass(db: Session, data: PassIssue, actor: Optional[Actor] = None) -> PassIssueResponse:
    """
    Émission explicite d'un pass (admin / sécurité).

    Lève NotFoundError (rendez-vous ou visiteur introuvable), MissingVisitor, MissingHost,
    VisitorBlacklisted ou ValidationError (fenêtre de validité incohérente).
    """
    appointment = None
    if data.appointment_id:
        appointment = db.get(Appointment, data.appointment_id)
        if appointment is None:
            raise NotFoundError("Rendez-vous introuvable.", code="APPOINTMENT_NOT_FOUND")

    # Visiteur : celui du rendez-vous est prioritaire
    visitor_id = appointment.visitor_id if appointment and appointment.visitor_id else data.visitor_id
    if visitor_id is None and actor is not None:
        visitor_id = db.execute(
            select(Visitor.id).where(Visitor.user_id == actor.id)
        ).scalar()
    if visitor_id is None:
        raise MissingVisitor()

    # Hôte : l'hôte explicite est prioritaire
    host_id = data.host_id or (appointment.host_id if appointment else None)
    if host_id is None:
        raise MissingHost()

    visitor = _load_eligible_visitor(db, visitor_id)

    if appointment is not None:
        existing = find_active_pass_for_appointment(db, appointment.id)
        if existing is not None:
            logger.info("Pass actif %s déjà émis pour le rendez-vous %s", existing.pass_number, appointment.id)
            return PassIssueResponse(
                visitor_pass=PassResponse.model_validate(existing),
                delivery=PassDelivery(document_generated=bool(existing.pdf_path)),
                created=False,
            )

    # Fenêtre de validité : valeurs explicites, sinon dérivées du rendez-vous
    if data.valid_until is not None:
        valid_from, valid_until = data.valid_from or utcnow(), data.valid_until
    elif appointment is not None:
        valid_from, valid_until = compute_validity_window(appointment.appointment_date, appointment.duration)
        if data.valid_from is not None:
            valid_from = data.valid_from
    else:
        raise ValidationError("valid_until est obligatoire sans rendez-vous.", code="INVALID_WINDOW")
    if valid_from >= valid_until:
        raise ValidationError("valid_from doit précéder valid_until.", code="INVALID_WINDOW")

    visitor_pass, created = _persist_pass(
        db,
        visitor_id=visitor.id,
        appointment_id=appointment.id if appointment else None,
        issued_by=actor.id if actor else None,
        host_id=host_id,
        valid_from=valid_from,
        valid_until=valid_until,
        access_areas=list(data.access_areas),
        special_instructions=data.special_instructions,
    )

    delivery = PassDelivery()
    if created:
        delivery.document_generated = _attach_artifacts(db, visitor_pass, visitor)
        _deliver_to_visitor(visitor_pass, visitor, delivery)
        logger.info(
            "Pass %s émis pour le visiteur %s (email=%s, sms=%s)",
            visitor_pass.pass_number, visitor.id, delivery.email_sent, delivery.sms_sent,
        )

    return PassIssueResponse(
        visitor_pass=PassResponse.model_validate(visitor_pass),
        delivery=delivery,
        created=created,
    )


def get_pass(db: Session, pass_id: uuid.UUID) -> PassResponse:
    visitor_pass = db.get(Pass, pass_id)
    if visitor_pass is None:
        raise PassNotFound()
    return PassResponse.model_validate(visitor_pass)


def list_passes(
    db: Session,
    status: Optional[str] = None,
    visitor_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 10,
) -> PassListResponse:
    """Liste paginée des pass, du plus récent au plus ancien."""
    filters = []
    if status:
        filters.append(Pass.status == status)
    if visitor_id:
        filters.append(Pass.visitor_id == visitor_id)

    total = db.execute(select(func.count()).select_from(Pass).where(*filters)).scalar() or 0
    passes = db.execute(
        select(Pass)
        .where(*filters)
        .order_by(Pass.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return PassListResponse(
        passes=[PassResponse.model_validate(p) for p in passes],
        total_pages=math.ceil(total / limit) if limit else 0,
        current_page=page,
        total=total,
    )


def get_my_active_pass(db: Session, actor: Actor) -> Optional[PassResponse]:
    """Dernier pass actif du profil visiteur lié à l'acteur, None s'il n'y en a pas."""
    visitor_id = db.execute(select(Visitor.id).where(Visitor.user_id == actor.id)).scalar()
    if visitor_id is None:
        return None
    visitor_pass = db.execute(
        select(Pass)
        .where(Pass.visitor_id == visitor_id, Pass.status == "active")
        .order_by(Pass.created_at.desc())
    ).scalars().first()
    return PassResponse.model_validate(visitor_pass) if visitor_pass else None


def revoke_pass(db: Session, pass_id: uuid.UUID) -> PassResponse:
    """Révocation administrative : active → revoked (terminal)."""
    visitor_pass = db.get(Pass, pass_id)
    if visitor_pass is None:
        raise PassNotFound()
    if visitor_pass.status != "active":
        raise InvalidTransition(f"Impossible de révoquer un pass {visitor_pass.status}.")

    visitor_pass.status = "revoked"
    db.commit()
    db.refresh(visitor_pass)
    logger.info("Pass %s révoqué", visitor_pass.pass_number)
    return PassResponse.model_validate(visitor_pass)


def expire_passes(db: Session, now: Optional[datetime] = None) -> int:
    """
    Passe en expired tous les pass actifs dont valid_until est dépassé.
    Appelé par le scheduler et par PATCH /passes/update-expired. Retourne le nombre de pass modifiés.
    """
    now = now or utcnow()
    result = db.execute(
        update(Pass)
        .where(Pass.status == "active", Pass.valid_until < now)
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("%d pass expiré(s)", count)
    return count


def get_pass_stats(db: Session) -> PassStats:
    rows = db.execute(select(Pass.status, func.count()).group_by(Pass.status)).all()
    counts = {status: count for status, count in rows}
    return PassStats(
        total=sum(counts.values()),
        active=counts.get("active", 0),
        expired=counts.get("expired", 0),
        revoked=counts.get("revoked", 0),
    )
