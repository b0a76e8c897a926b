"""
Router pour les entrées/sorties des visiteurs sur site.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.check_log import (
    CheckInRequest,
    CheckLogListResponse,
    CheckLogResponse,
    CheckLogStats,
    CheckOutRequest,
)
from app.security import Actor, get_current_actor, require_roles
from app.services import checklog_service

router = APIRouter(prefix="/api/v1/checklogs", tags=["Entrées / sorties"])


@router.post("/checkin", response_model=CheckLogResponse, status_code=201, summary="Enregistrer une entrée")
def check_in(
    data: CheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "security")),
):
    """
    Enregistre l'arrivée d'un visiteur sur présentation d'un pass actif.
    pass_id prioritaire ; à défaut, le pass actif du rendez-vous appointment_id.
    L'hôte est prévenu par email et SMS, le visiteur par SMS.
    """
    return checklog_service.check_in(db, data, actor)


@router.patch("/checkout/{log_id}", response_model=CheckLogResponse, summary="Enregistrer une sortie")
def check_out(
    log_id: uuid.UUID,
    data: Optional[CheckOutRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "security")),
):
    return checklog_service.check_out(db, log_id, actor, data.notes if data else None)


@router.get("", response_model=CheckLogListResponse, summary="Historique des passages")
def list_check_logs(
    day: Optional[date] = Query(default=None, alias="date"),
    visitor_id: Optional[uuid.UUID] = None,
    status: Optional[str] = Query(default=None, pattern="^(checked-in|checked-out)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return checklog_service.list_check_logs(db, day, visitor_id, status, page, limit)


@router.get("/current", response_model=List[CheckLogResponse], summary="Visiteurs actuellement sur site")
def list_current_visitors(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return checklog_service.list_current_visitors(db)


@router.get("/stats", response_model=CheckLogStats, summary="Statistiques de fréquentation")
def get_check_log_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return checklog_service.get_check_log_stats(db)


@router.get("/visitor/{visitor_id}", response_model=List[CheckLogResponse], summary="Passages d'un visiteur")
def get_visitor_history(
    visitor_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return checklog_service.get_visitor_history(db, visitor_id)


@router.get("/{log_id}", response_model=CheckLogResponse, summary="Détail d'un passage")
def get_check_log(log_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return checklog_service.get_check_log(db, log_id)
