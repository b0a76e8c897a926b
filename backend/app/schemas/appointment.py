"""
Schémas Pydantic pour les rendez-vous et le workflow d'approbation.

La date est reçue sous forme de chaîne (ISO datetime ou YYYY-MM-DD + appointment_time)
et combinée en un instant par appointment_service.build_appointment_datetime.
"""

import re
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")


class VisitorSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    photo: Optional[str] = None
    is_blacklisted: bool = False

    model_config = {"from_attributes": True}


class HostSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None

    model_config = {"from_attributes": True}


class AppointmentCreate(BaseModel):
    """Demande de rendez-vous (visiteur connecté, hôte ou formulaire public)."""
    host_id: uuid.UUID
    visitor_id: Optional[uuid.UUID] = None
    visitor_name: Optional[str] = None    # Nom affiché pour un invité sans profil
    appointment_date: str
    appointment_time: Optional[str] = None
    duration: Optional[int] = None
    purpose: str
    location: str
    notes: Optional[str] = None
    visitor_photo: Optional[str] = None   # Chemin déjà stocké par le service d'upload

    @field_validator("purpose", "location")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("L'objet et le lieu du rendez-vous sont obligatoires.")
        return v.strip()

    @field_validator("appointment_time")
    @classmethod
    def valid_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TIME_PATTERN.match(v):
            raise ValueError("L'heure doit être au format HH:MM.")
        return v

    @field_validator("duration")
    @classmethod
    def positive_duration(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("La durée doit être un nombre de minutes positif.")
        return v


class AppointmentUpdate(BaseModel):
    """Modification partielle. Seuls les champs fournis sont modifiés."""
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    duration: Optional[int] = None
    purpose: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    visitor_photo: Optional[str] = None

    @field_validator("appointment_time")
    @classmethod
    def valid_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TIME_PATTERN.match(v):
            raise ValueError("L'heure doit être au format HH:MM.")
        return v

    @field_validator("duration")
    @classmethod
    def positive_duration(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("La durée doit être un nombre de minutes positif.")
        return v


class AppointmentReject(BaseModel):
    rejection_reason: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: uuid.UUID
    visitor_id: Optional[uuid.UUID]
    host_id: uuid.UUID
    visitor: Optional[VisitorSummary] = None
    host: Optional[HostSummary] = None
    appointment_date: datetime
    appointment_time: str
    duration: int
    purpose: str
    location: str
    status: str
    approved_by: Optional[uuid.UUID] = None
    approval_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    visitor_photo: Optional[str] = None
    notifications_sent: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationStatus(BaseModel):
    """Résultat des effets de bord best-effort de l'approbation."""
    email_sent: bool = False
    sms_sent: bool = False
    pass_issued: bool = False
    pass_number: Optional[str] = None
    message: str = ""


class ApprovalResponse(AppointmentResponse):
    notification_status: NotificationStatus


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    total_pages: int
    current_page: int
    total: int


class AppointmentStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    today_appointments: int
