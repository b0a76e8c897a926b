"""
Router pour les rendez-vous et le workflow d'approbation.
Les erreurs métier (ServiceError) sont traduites en réponses HTTP par le handler de app.main.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReject,
    AppointmentResponse,
    AppointmentStats,
    AppointmentUpdate,
    ApprovalResponse,
)
from app.security import Actor, get_current_actor, require_roles
from app.services import appointment_service

router = APIRouter(prefix="/api/v1/appointments", tags=["Rendez-vous"])


@router.post("", response_model=AppointmentResponse, status_code=201, summary="Demander un rendez-vous")
def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Crée une demande de rendez-vous (statut pending).
    Un visiteur connecté est automatiquement lié à son profil visiteur.
    L'hôte reçoit un email de notification.
    """
    return appointment_service.create_appointment(db, data, actor)


@router.post("/public", response_model=AppointmentResponse, status_code=201,
             summary="Demander un rendez-vous (formulaire public)")
def create_public_appointment(data: AppointmentCreate, db: Session = Depends(get_db)):
    """Même règles que la création authentifiée ; sans visitor_id, le rendez-vous est un rendez-vous invité."""
    return appointment_service.create_appointment_public(db, data)


@router.get("", response_model=AppointmentListResponse, summary="Lister les rendez-vous")
def list_appointments(
    status: Optional[str] = None,
    day: Optional[str] = Query(default=None, alias="date", description="Jour au format YYYY-MM-DD"),
    host_id: Optional[uuid.UUID] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "employee")),
):
    """Liste paginée, filtrable par statut, jour et hôte. Un employé ne voit que ses rendez-vous."""
    return appointment_service.list_appointments(db, actor, status, day, host_id, page, limit)


@router.get("/my", response_model=List[AppointmentResponse], summary="Mes rendez-vous")
def list_my_appointments(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("visitor")),
):
    return appointment_service.list_my_appointments(db, actor)


@router.get("/stats", response_model=AppointmentStats, summary="Statistiques des rendez-vous")
def get_appointment_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return appointment_service.get_appointment_stats(db, actor)


@router.get("/visitor/{visitor_id}", response_model=List[AppointmentResponse],
            summary="Rendez-vous d'un visiteur")
def list_visitor_appointments(visitor_id: uuid.UUID, db: Session = Depends(get_db)):
    return appointment_service.list_visitor_appointments(db, visitor_id)


@router.get("/{appointment_id}", response_model=AppointmentResponse, summary="Détail d'un rendez-vous")
def get_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return appointment_service.get_appointment(db, appointment_id, actor)


@router.patch("/{appointment_id}", response_model=AppointmentResponse, summary="Modifier un rendez-vous")
def update_appointment(
    appointment_id: uuid.UUID,
    data: AppointmentUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "employee")),
):
    """Seuls les champs fournis sont modifiés. Impossible sur un rendez-vous refusé ou annulé."""
    return appointment_service.update_appointment(db, appointment_id, actor, data)


@router.patch("/{appointment_id}/approve", response_model=ApprovalResponse, summary="Approuver un rendez-vous")
def approve_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "employee")),
):
    """
    Approuve un rendez-vous en attente.

    Après l'approbation (best-effort, dans l'ordre) :
    - Email de confirmation avec QR code + SMS au visiteur
    - Émission automatique du pass (réutilisé s'il existe déjà)

    notification_status rapporte le résultat de chaque étape.
    """
    return appointment_service.approve_appointment(db, appointment_id, actor)


@router.patch("/{appointment_id}/reject", response_model=AppointmentResponse, summary="Refuser un rendez-vous")
def reject_appointment(
    appointment_id: uuid.UUID,
    data: Optional[AppointmentReject] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "employee")),
):
    reason = data.rejection_reason if data else None
    return appointment_service.reject_appointment(db, appointment_id, actor, reason)


@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse, summary="Annuler un rendez-vous")
def cancel_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "employee", "visitor")),
):
    """Annule un rendez-vous en attente ou approuvé (hôte, admin ou visiteur concerné)."""
    return appointment_service.cancel_appointment(db, appointment_id, actor)
