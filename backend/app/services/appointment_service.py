"""
Service de gestion des rendez-vous et du workflow d'approbation.

Cycle de vie :
  pending → approved | rejected | cancelled
  approved → cancelled
  rejected et cancelled sont terminaux.

Autorisations (appliquées ici, les rôles sont filtrés par les routes) :
  - admin : tous les rendez-vous
  - employee : uniquement les rendez-vous dont il est l'hôte
  - visitor : uniquement ses propres rendez-vous (lecture, annulation)

Après l'approbation (déjà validée en base), POST_APPROVAL_HOOKS s'exécutent dans l'ordre,
chacun isolé : l'échec de l'un n'annule ni l'approbation ni le suivant.
"""

import logging
import math
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.database import utcnow
from app.exceptions import (
    BusinessRuleError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    ServiceError,
    ValidationError,
    VisitorBlacklisted,
)
from app.models.appointment import Appointment
from app.models.user import User
from app.models.visitor import Visitor
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStats,
    AppointmentUpdate,
    ApprovalResponse,
    NotificationStatus,
)
from app.security import Actor
from app.services import email_service, pass_service, qr_service, sms_service

logger = logging.getLogger(__name__)

DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ----------------------------------------------------------------
# Règles de base
# ----------------------------------------------------------------

def build_appointment_datetime(date_value: str, time_value: Optional[str] = None) -> Tuple[datetime, str]:
    """
    Combine la date et l'heure reçues en un instant UTC naïf.
    Formats acceptés : "YYYY-MM-DD" + "HH:MM", datetime ISO, ou date seule (minuit).
    Retourne (instant, heure d'affichage "HH:MM"). Lève ValidationError si illisible.
    """
    text = (date_value or "").strip()
    try:
        if time_value and DATE_ONLY.match(text):
            instant = datetime.strptime(f"{text} {time_value}", "%Y-%m-%d %H:%M")
        else:
            instant = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Date de rendez-vous invalide.", code="INVALID_DATE")

    if instant.tzinfo is not None:
        instant = instant.astimezone(timezone.utc).replace(tzinfo=None)
    return instant, time_value or instant.strftime("%H:%M")


def _ensure_future(instant: datetime) -> None:
    if instant <= utcnow():
        raise BusinessRuleError("La date du rendez-vous doit être dans le futur.", code="APPOINTMENT_IN_PAST")


def _get_or_404(db: Session, appointment_id: uuid.UUID) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Rendez-vous introuvable.", code="APPOINTMENT_NOT_FOUND")
    return appointment


def _is_own_visit(appointment: Appointment, actor: Actor) -> bool:
    return appointment.visitor is not None and appointment.visitor.user_id == actor.id


def _ensure_can_manage(appointment: Appointment, actor: Actor, allow_visitor: bool = False) -> None:
    """Admin : tout ; employé : ses rendez-vous ; visiteur (si autorisé) : ses propres visites."""
    if actor.is_admin:
        return
    if actor.role == "employee" and appointment.host_id == actor.id:
        return
    if allow_visitor and actor.role == "visitor" and _is_own_visit(appointment, actor):
        return
    raise ForbiddenError("Vous n'êtes pas autorisé à agir sur ce rendez-vous.", code="FORBIDDEN")


def _ensure_can_read(appointment: Appointment, actor: Actor) -> None:
    if actor.role in ("admin", "security"):
        return
    _ensure_can_manage(appointment, actor, allow_visitor=True)


def _linked_visitor(db: Session, actor: Actor) -> Visitor:
    """Profil visiteur de l'acteur ; un profil minimal est créé depuis le compte s'il manque."""
    visitor = db.execute(select(Visitor).where(Visitor.user_id == actor.id)).scalars().first()
    if visitor is not None:
        return visitor

    user = db.get(User, actor.id)
    visitor = Visitor(
        user_id=actor.id,
        name=user.name if user else "Visiteur",
        email=user.email if user else None,
        phone=user.phone if user else None,
    )
    db.add(visitor)
    db.flush()
    logger.info("Profil visiteur créé pour l'utilisateur %s", actor.id)
    return visitor


# ----------------------------------------------------------------
# Création / modification
# ----------------------------------------------------------------

def create_appointment(db: Session, data: AppointmentCreate, actor: Optional[Actor] = None) -> AppointmentResponse:
    """
    Crée une demande de rendez-vous (statut pending).

    Règles métier :
      - L'hôte doit exister, être un employé et être actif
      - La date doit être dans le futur
      - Un acteur visiteur est lié à son profil ; sinon visitor_id explicite ; sinon rendez-vous invité
      - Un visiteur sur liste noire ne peut pas demander de rendez-vous

    Lève NotFoundError, ValidationError, BusinessRuleError ou VisitorBlacklisted.
    """
    host = db.get(User, data.host_id)
    if host is None:
        raise NotFoundError("Hôte introuvable.", code="HOST_NOT_FOUND")
    if host.role != "employee" or not host.is_active:
        raise BusinessRuleError("L'hôte doit être un employé actif.", code="HOST_NOT_ELIGIBLE")

    instant, display_time = build_appointment_datetime(data.appointment_date, data.appointment_time)
    _ensure_future(instant)

    visitor = None
    if actor is not None and actor.role == "visitor":
        visitor = _linked_visitor(db, actor)
    elif data.visitor_id is not None:
        visitor = db.get(Visitor, data.visitor_id)
        if visitor is None:
            raise NotFoundError("Visiteur introuvable.", code="VISITOR_NOT_FOUND")
    if visitor is not None and visitor.is_blacklisted:
        db.rollback()
        raise VisitorBlacklisted("Un visiteur sur liste noire ne peut pas demander de rendez-vous.")

    appointment = Appointment(
        visitor_id=visitor.id if visitor else None,
        host_id=host.id,
        appointment_date=instant,
        appointment_time=display_time,
        duration=data.duration or settings.DEFAULT_APPOINTMENT_DURATION,
        purpose=data.purpose,
        location=data.location,
        notes=data.notes,
        visitor_photo=data.visitor_photo,
        status="pending",
        created_by=actor.id if actor else None,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    visitor_name = visitor.name if visitor else (data.visitor_name or "Visiteur invité")
    email_service.send_new_appointment_request(host, visitor_name, appointment)

    logger.info("Rendez-vous %s créé pour l'hôte %s", appointment.id, host.id)
    return AppointmentResponse.model_validate(appointment)


def create_appointment_public(db: Session, data: AppointmentCreate) -> AppointmentResponse:
    """Formulaire public : mêmes règles, sans acteur."""
    return create_appointment(db, data, actor=None)


def update_appointment(
    db: Session,
    appointment_id: uuid.UUID,
    actor: Actor,
    data: AppointmentUpdate,
) -> AppointmentResponse:
    """
    Modification partielle. Une nouvelle date doit rester dans le futur.
    Lève InvalidTransition sur un rendez-vous refusé ou annulé.
    """
    appointment = _get_or_404(db, appointment_id)
    _ensure_can_manage(appointment, actor)
    if appointment.status in ("rejected", "cancelled"):
        raise InvalidTransition(f"Impossible de modifier un rendez-vous {appointment.status}.")

    if data.appointment_date is not None or data.appointment_time is not None:
        date_value = data.appointment_date or appointment.appointment_date.date().isoformat()
        time_value = data.appointment_time
        if time_value is None and DATE_ONLY.match(date_value.strip()):
            time_value = appointment.appointment_time
        instant, display_time = build_appointment_datetime(date_value, time_value)
        _ensure_future(instant)
        appointment.appointment_date = instant
        appointment.appointment_time = display_time

    for field in ("duration", "purpose", "location", "notes", "visitor_photo"):
        value = getattr(data, field)
        if value is not None:
            setattr(appointment, field, value)

    db.commit()
    db.refresh(appointment)
    logger.info("Rendez-vous %s modifié", appointment.id)
    return AppointmentResponse.model_validate(appointment)


# ----------------------------------------------------------------
# Workflow d'approbation
# ----------------------------------------------------------------

def _notify_visitor(db: Session, appointment: Appointment, actor: Actor, result: NotificationStatus) -> None:
    """Email de confirmation avec QR code du rendez-vous, puis SMS."""
    visitor = appointment.visitor
    if visitor is None:
        return

    payload = {
        "appointmentId": str(appointment.id),
        "visitorId": str(visitor.id),
        "hostId": str(appointment.host_id),
        "date": appointment.appointment_date.isoformat(),
    }
    qr_png = qr_service.generate_qr_png(qr_service.encode_payload(payload))
    result.email_sent = email_service.send_appointment_confirmation(appointment, visitor, appointment.host, qr_png)
    result.sms_sent = sms_service.send_appointment_sms(
        visitor.phone,
        appointment.appointment_date.strftime("%d/%m/%Y"),
        appointment.appointment_time,
        appointment.location,
        appointment.host.name if appointment.host else "",
    )

    appointment.notifications_sent = result.email_sent
    db.commit()


def _issue_pass(db: Session, appointment: Appointment, actor: Actor, result: NotificationStatus) -> None:
    """Pass actif du rendez-vous : réutilisé s'il existe, sinon émis."""
    try:
        visitor_pass, _ = pass_service.find_or_issue_for_appointment(db, appointment, issued_by=actor.id)
    except ServiceError as exc:
        logger.info("Pas de pass émis pour le rendez-vous %s : %s", appointment.id, exc.message)
        return
    result.pass_issued = True
    result.pass_number = visitor_pass.pass_number


POST_APPROVAL_HOOKS = [_notify_visitor, _issue_pass]


def approve_appointment(db: Session, appointment_id: uuid.UUID, actor: Actor) -> ApprovalResponse:
    """
    Approuve un rendez-vous en attente puis exécute les hooks post-approbation.
    Lève NotFoundError, ForbiddenError ou InvalidTransition (statut différent de pending).
    """
    appointment = _get_or_404(db, appointment_id)
    _ensure_can_manage(appointment, actor)
    if appointment.status != "pending":
        raise InvalidTransition(f"Seul un rendez-vous en attente peut être approuvé (statut : {appointment.status}).")

    appointment.status = "approved"
    appointment.approved_by = actor.id
    appointment.approval_date = utcnow()
    db.commit()
    db.refresh(appointment)
    logger.info("Rendez-vous %s approuvé par %s", appointment.id, actor.id)

    result = NotificationStatus()
    for hook in POST_APPROVAL_HOOKS:
        try:
            hook(db, appointment, actor, result)
        except Exception:
            db.rollback()
            logger.warning("Hook %s en échec pour le rendez-vous %s", hook.__name__, appointment.id, exc_info=True)

    result.message = (
        "Rendez-vous approuvé, email de confirmation envoyé avec le QR code."
        if result.email_sent
        else "Rendez-vous approuvé, mais l'email de confirmation n'a pas été envoyé."
    )
    db.refresh(appointment)
    return ApprovalResponse(
        **AppointmentResponse.model_validate(appointment).model_dump(),
        notification_status=result,
    )


def reject_appointment(
    db: Session,
    appointment_id: uuid.UUID,
    actor: Actor,
    reason: Optional[str] = None,
) -> AppointmentResponse:
    """Refuse un rendez-vous en attente. Lève InvalidTransition si le statut n'est pas pending."""
    appointment = _get_or_404(db, appointment_id)
    _ensure_can_manage(appointment, actor)
    if appointment.status != "pending":
        raise InvalidTransition(f"Seul un rendez-vous en attente peut être refusé (statut : {appointment.status}).")

    appointment.status = "rejected"
    appointment.approved_by = actor.id
    appointment.approval_date = utcnow()
    appointment.rejection_reason = reason
    db.commit()
    db.refresh(appointment)

    if appointment.visitor is not None:
        email_service.send_appointment_rejected(appointment, appointment.visitor, appointment.host, reason)

    logger.info("Rendez-vous %s refusé par %s", appointment.id, actor.id)
    return AppointmentResponse.model_validate(appointment)


def cancel_appointment(db: Session, appointment_id: uuid.UUID, actor: Actor) -> AppointmentResponse:
    """
    Annule un rendez-vous en attente ou approuvé.
    Autorisé pour l'hôte, un admin ou le visiteur concerné.
    """
    appointment = _get_or_404(db, appointment_id)
    _ensure_can_manage(appointment, actor, allow_visitor=True)
    if appointment.status not in ("pending", "approved"):
        raise InvalidTransition(f"Impossible d'annuler un rendez-vous {appointment.status}.")

    appointment.status = "cancelled"
    db.commit()
    db.refresh(appointment)

    if appointment.visitor is not None:
        email_service.send_appointment_cancelled(appointment, appointment.visitor.email)
    if appointment.host is not None:
        email_service.send_appointment_cancelled(appointment, appointment.host.email)

    logger.info("Rendez-vous %s annulé par %s", appointment.id, actor.id)
    return AppointmentResponse.model_validate(appointment)


# ----------------------------------------------------------------
# Consultation
# ----------------------------------------------------------------

def get_appointment(db: Session, appointment_id: uuid.UUID, actor: Actor) -> AppointmentResponse:
    appointment = _get_or_404(db, appointment_id)
    _ensure_can_read(appointment, actor)
    return AppointmentResponse.model_validate(appointment)


def list_appointments(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    day: Optional[str] = None,
    host_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentListResponse:
    """Liste paginée. Un employé ne voit que ses propres rendez-vous."""
    filters = []
    if status:
        filters.append(Appointment.status == status)
    if day:
        start, _ = build_appointment_datetime(day)
        start = start.replace(hour=0, minute=0, second=0, microsecond=0)
        filters.extend([Appointment.appointment_date >= start,
                        Appointment.appointment_date < start + timedelta(days=1)])
    if actor.role == "employee":
        filters.append(Appointment.host_id == actor.id)
    elif host_id:
        filters.append(Appointment.host_id == host_id)

    total = db.execute(select(func.count()).select_from(Appointment).where(*filters)).scalar() or 0
    appointments = db.execute(
        select(Appointment)
        .where(*filters)
        .order_by(Appointment.appointment_date.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(a) for a in appointments],
        total_pages=math.ceil(total / limit) if limit else 0,
        current_page=page,
        total=total,
    )


def list_visitor_appointments(db: Session, visitor_id: uuid.UUID) -> List[AppointmentResponse]:
    appointments = db.execute(
        select(Appointment)
        .where(Appointment.visitor_id == visitor_id)
        .order_by(Appointment.appointment_date.desc())
    ).scalars().all()
    return [AppointmentResponse.model_validate(a) for a in appointments]


def list_my_appointments(db: Session, actor: Actor) -> List[AppointmentResponse]:
    """Rendez-vous du profil visiteur lié à l'acteur (liste vide sans profil)."""
    visitor_id = db.execute(select(Visitor.id).where(Visitor.user_id == actor.id)).scalar()
    if visitor_id is None:
        return []
    return list_visitor_appointments(db, visitor_id)


def get_appointment_stats(db: Session, actor: Actor, now: Optional[datetime] = None) -> AppointmentStats:
    """Compteurs par statut ; today_appointments = rendez-vous approuvés du jour."""
    now = now or utcnow()
    filters = [Appointment.host_id == actor.id] if actor.role == "employee" else []

    rows = db.execute(
        select(Appointment.status, func.count()).where(*filters).group_by(Appointment.status)
    ).all()
    counts = {status: count for status, count in rows}

    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today = db.execute(
        select(func.count()).select_from(Appointment).where(
            *filters,
            Appointment.status == "approved",
            Appointment.appointment_date >= start,
            Appointment.appointment_date < start + timedelta(days=1),
        )
    ).scalar() or 0

    return AppointmentStats(
        total=sum(counts.values()),
        pending=counts.get("pending", 0),
        approved=counts.get("approved", 0),
        rejected=counts.get("rejected", 0),
        today_appointments=today,
    )
