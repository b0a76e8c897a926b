"""
Service de suivi des entrées/sorties sur site.

Règles métier :
  - Une entrée exige un pass actif (pass_id, ou pass actif du rendez-vous donné)
  - Une seule session ouverte par pass (vérifiée ici, garantie par uq_check_logs_open_pass)
  - check_out_time n'est écrit qu'une seule fois (sortie manuelle ou automatique)
  - Statistiques visiteur et notifications : best-effort, jamais bloquantes
"""

import logging
import math
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import utcnow
from app.exceptions import (
    AlreadyCheckedIn,
    AlreadyCheckedOut,
    LogNotFound,
    MissingReference,
    PassNotActive,
    PassNotFound,
)
from app.models.check_log import CheckLog
from app.models.visitor import Visitor
from app.models.visitor_pass import Pass
from app.schemas.check_log import (
    CheckInRequest,
    CheckLogListResponse,
    CheckLogResponse,
    CheckLogStats,
    SweepResult,
)
from app.security import Actor
from app.services import email_service, sms_service
from app.services.pass_service import find_active_pass_for_appointment

logger = logging.getLogger(__name__)


def _append_note(existing: Optional[str], extra: str) -> str:
    return f"{existing} {extra}" if existing else extra


def _update_visitor_stats(db: Session, visitor_id: uuid.UUID, now: datetime) -> None:
    """visit_count + 1 et last_visit. Un échec est journalisé sans annuler l'entrée."""
    try:
        visitor = db.get(Visitor, visitor_id)
        if visitor is not None:
            visitor.visit_count = (visitor.visit_count or 0) + 1
            visitor.last_visit = now
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Statistiques du visiteur %s non mises à jour : %s", visitor_id, exc)


def _notify_check_in(check_log: CheckLog) -> None:
    """Email à l'hôte, SMS au visiteur, SMS à l'hôte."""
    visitor = check_log.visitor
    host = check_log.visitor_pass.host if check_log.visitor_pass else None
    arrived_at = check_log.check_in_time.strftime("%d/%m/%Y %H:%M")

    if host is not None and visitor is not None:
        email_service.send_check_in_notice(host, visitor, check_log)
    if visitor is not None:
        sms_service.send_sms(
            visitor.phone,
            f"Entrée enregistrée le {arrived_at} ({check_log.location or 'votre rendez-vous'}).",
        )
    if host is not None:
        sms_service.send_sms(
            host.phone,
            f"{visitor.name if visitor else 'Votre visiteur'} est arrivé le {arrived_at}.",
        )


def check_in(db: Session, data: CheckInRequest, actor: Optional[Actor] = None) -> CheckLogResponse:
    """
    Enregistre l'entrée d'un visiteur.

    Lève MissingReference, PassNotFound, PassNotActive ou AlreadyCheckedIn.
    """
    if data.pass_id is not None:
        visitor_pass = db.get(Pass, data.pass_id)
        if visitor_pass is None:
            raise PassNotFound()
    elif data.appointment_id is not None:
        # Pas d'émission automatique ici : le rendez-vous doit déjà avoir un pass actif
        visitor_pass = find_active_pass_for_appointment(db, data.appointment_id)
        if visitor_pass is None:
            raise MissingReference()
    else:
        raise MissingReference()

    if visitor_pass.status != "active":
        raise PassNotActive(visitor_pass.status)

    already_inside = db.execute(
        select(CheckLog.id).where(CheckLog.pass_id == visitor_pass.id, CheckLog.check_out_time.is_(None))
    ).first()
    if already_inside is not None:
        raise AlreadyCheckedIn()

    now = utcnow()
    visitor_id = data.visitor_id or visitor_pass.visitor_id
    check_log = CheckLog(
        pass_id=visitor_pass.id,
        visitor_id=visitor_id,
        check_in_time=now,
        checked_in_by=actor.id if actor else None,
        temperature=data.temperature,
        device_info=data.device_info.model_dump() if data.device_info else None,
        notes=data.notes,
        location=data.location,
    )
    db.add(check_log)
    try:
        db.commit()
    except IntegrityError:
        # Entrée concurrente sur le même pass
        db.rollback()
        raise AlreadyCheckedIn()
    db.refresh(check_log)

    _update_visitor_stats(db, visitor_id, now)
    _notify_check_in(check_log)

    logger.info("Entrée du visiteur %s sur le pass %s", visitor_id, visitor_pass.pass_number)
    return CheckLogResponse.model_validate(check_log)


def check_out(
    db: Session,
    log_id: uuid.UUID,
    actor: Optional[Actor] = None,
    notes: Optional[str] = None,
) -> CheckLogResponse:
    """
    Enregistre la sortie. Les notes sont ajoutées à la suite des notes d'entrée.

    Lève LogNotFound ou AlreadyCheckedOut.
    """
    check_log = db.get(CheckLog, log_id)
    if check_log is None:
        raise LogNotFound()
    if check_log.check_out_time is not None:
        raise AlreadyCheckedOut()

    check_log.check_out_time = utcnow()
    check_log.checked_out_by = actor.id if actor else None
    if notes:
        check_log.notes = _append_note(check_log.notes, notes)

    db.commit()
    db.refresh(check_log)
    logger.info("Sortie du visiteur %s (log %s)", check_log.visitor_id, check_log.id)
    return CheckLogResponse.model_validate(check_log)


def auto_checkout_sweep(
    db: Session,
    now: Optional[datetime] = None,
    max_duration_minutes: Optional[int] = None,
) -> SweepResult:
    """
    Ferme les sessions ouvertes depuis plus de max_duration_minutes.

    check_out_time = min(check_in + max, now) : la sortie n'est jamais datée dans le futur.
    Chaque enregistrement est validé séparément ; un échec est annulé, compté et n'arrête pas le lot.
    """
    now = now or utcnow()
    max_minutes = max_duration_minutes or settings.AUTO_CHECKOUT_AFTER_MIN
    limit = timedelta(minutes=max_minutes)

    stale_ids = db.execute(
        select(CheckLog.id).where(
            CheckLog.check_out_time.is_(None),
            CheckLog.check_in_time <= now - limit,
        )
    ).scalars().all()

    closed = failed = 0
    for log_id in stale_ids:
        try:
            check_log = db.get(CheckLog, log_id)
            if check_log is None or check_log.check_out_time is not None:
                continue
            check_log.check_out_time = min(check_log.check_in_time + limit, now)
            check_log.notes = _append_note(check_log.notes, f"[auto-checkout after {max_minutes} min]")
            db.commit()
            closed += 1
        except Exception as exc:
            db.rollback()
            failed += 1
            logger.error("Sortie automatique impossible pour le log %s : %s", log_id, exc)

    if stale_ids:
        logger.info("Sortie automatique : %d inspecté(s), %d fermé(s), %d échec(s)",
                    len(stale_ids), closed, failed)
    return SweepResult(inspected=len(stale_ids), closed=closed, failed=failed)


# ----------------------------------------------------------------
# Consultation
# ----------------------------------------------------------------

def _day_bounds(day: date):
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def get_check_log(db: Session, log_id: uuid.UUID) -> CheckLogResponse:
    check_log = db.get(CheckLog, log_id)
    if check_log is None:
        raise LogNotFound()
    return CheckLogResponse.model_validate(check_log)


def list_check_logs(
    db: Session,
    day: Optional[date] = None,
    visitor_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> CheckLogListResponse:
    """
    Liste paginée des passages, du plus récent au plus ancien.
    status : "checked-in" (encore sur site) ou "checked-out".
    """
    filters = []
    if day is not None:
        start, end = _day_bounds(day)
        filters.extend([CheckLog.check_in_time >= start, CheckLog.check_in_time < end])
    if visitor_id is not None:
        filters.append(CheckLog.visitor_id == visitor_id)
    if status == "checked-in":
        filters.append(CheckLog.check_out_time.is_(None))
    elif status == "checked-out":
        filters.append(CheckLog.check_out_time.is_not(None))

    total = db.execute(select(func.count()).select_from(CheckLog).where(*filters)).scalar() or 0
    logs = db.execute(
        select(CheckLog)
        .where(*filters)
        .order_by(CheckLog.check_in_time.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return CheckLogListResponse(
        check_logs=[CheckLogResponse.model_validate(log) for log in logs],
        total_pages=math.ceil(total / limit) if limit else 0,
        current_page=page,
        total=total,
    )


def list_current_visitors(db: Session) -> List[CheckLogResponse]:
    """Visiteurs actuellement sur site."""
    logs = db.execute(
        select(CheckLog)
        .where(CheckLog.check_out_time.is_(None))
        .order_by(CheckLog.check_in_time.desc())
    ).scalars().all()
    return [CheckLogResponse.model_validate(log) for log in logs]


def get_visitor_history(db: Session, visitor_id: uuid.UUID) -> List[CheckLogResponse]:
    logs = db.execute(
        select(CheckLog)
        .where(CheckLog.visitor_id == visitor_id)
        .order_by(CheckLog.check_in_time.desc())
    ).scalars().all()
    return [CheckLogResponse.model_validate(log) for log in logs]


def get_check_log_stats(db: Session, now: Optional[datetime] = None) -> CheckLogStats:
    """Compteurs du tableau de bord. La durée moyenne porte sur les visites terminées aujourd'hui."""
    now = now or utcnow()
    start, end = _day_bounds(now.date())

    currently_inside = db.execute(
        select(func.count()).select_from(CheckLog).where(CheckLog.check_out_time.is_(None))
    ).scalar() or 0
    today_check_ins = db.execute(
        select(func.count()).select_from(CheckLog)
        .where(CheckLog.check_in_time >= start, CheckLog.check_in_time < end)
    ).scalar() or 0
    total_visits = db.execute(select(func.count()).select_from(CheckLog)).scalar() or 0

    finished_today = db.execute(
        select(CheckLog.check_in_time, CheckLog.check_out_time)
        .where(CheckLog.check_out_time >= start, CheckLog.check_out_time < end)
    ).all()
    durations = [(out - inn).total_seconds() / 60 for inn, out in finished_today]

    return CheckLogStats(
        currently_inside=currently_inside,
        today_check_ins=today_check_ins,
        today_check_outs=len(finished_today),
        total_visits=total_visits,
        average_visit_duration=round(sum(durations) / len(durations)) if durations else None,
    )
