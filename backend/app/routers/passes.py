"""
Router pour les pass visiteurs : émission, consultation, vérification au scan, révocation.
"""

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import ServiceError
from app.schemas.visitor_pass import (
    ExpireResult,
    PassIssue,
    PassIssueResponse,
    PassListResponse,
    PassResponse,
    PassStats,
    VerificationResponse,
    VerifyRequest,
)
from app.security import Actor, get_current_actor, get_optional_actor, require_roles
from app.services import pass_service, verification_service

router = APIRouter(prefix="/api/v1/passes", tags=["Pass"])


@router.post("", response_model=PassIssueResponse, status_code=201, summary="Émettre un pass")
def issue_pass(
    data: PassIssue,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "security")),
):
    """
    Émet un pass visiteur.

    - Avec appointment_id : visiteur, hôte et fenêtre sont dérivés du rendez-vous
      (si un pass actif existe déjà pour ce rendez-vous, il est retourné avec created=false)
    - Sans rendez-vous : visitor_id, host_id et valid_until sont requis
    - Génère le QR code et le badge PDF, puis envoie le pass par email et SMS
    """
    return pass_service.issue_pass(db, data, actor)


@router.get("", response_model=PassListResponse, summary="Lister les pass")
def list_passes(
    status: Optional[str] = None,
    visitor_id: Optional[uuid.UUID] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return pass_service.list_passes(db, status, visitor_id, page, limit)


@router.get("/stats", response_model=PassStats, summary="Statistiques des pass")
def get_pass_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return pass_service.get_pass_stats(db)


@router.get("/my", response_model=Optional[PassResponse], summary="Mon pass actif")
def get_my_pass(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Dernier pass actif du visiteur connecté, null s'il n'en a pas."""
    return pass_service.get_my_active_pass(db, actor)


@router.patch("/update-expired", response_model=ExpireResult, summary="Expirer les pass échus")
def update_expired_passes(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "security")),
):
    """Passe en expired tous les pass actifs dont valid_until est dépassé (également fait par le scheduler)."""
    return ExpireResult(modified_count=pass_service.expire_passes(db))


def _verify(db: Session, raw_value: Any, actor: Optional[Actor]):
    """Les échecs de vérification sont rendus sous la forme {valid: false, error, kind, code}."""
    try:
        return verification_service.verify_pass(db, raw_value, actor)
    except ServiceError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"valid": False, "error": exc.message, "kind": exc.kind, "code": exc.code},
        )


@router.get("/verify/{value}", response_model=VerificationResponse, summary="Vérifier un pass (scan)")
def verify_pass_by_value(
    value: str,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_optional_actor),
):
    """
    Vérifie un pass à partir d'un numéro de pass, d'un identifiant de rendez-vous
    ou du contenu JSON d'un QR code.
    Un rendez-vous approuvé sans pass reçoit son pass à ce moment-là.
    """
    return _verify(db, value, actor)


@router.post("/verify", response_model=VerificationResponse, summary="Vérifier un pass (corps JSON)")
def verify_pass(
    data: VerifyRequest,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_optional_actor),
):
    """Corps : {value | passNumber | appointmentId}, chaîne, nombre ou objet structuré."""
    return _verify(db, data.raw_value(), actor)


@router.get("/{pass_id}", response_model=PassResponse, summary="Détail d'un pass")
def get_pass(pass_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return pass_service.get_pass(db, pass_id)


@router.patch("/{pass_id}/revoke", response_model=PassResponse, summary="Révoquer un pass")
def revoke_pass(
    pass_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    return pass_service.revoke_pass(db, pass_id)
