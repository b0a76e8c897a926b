"""
Schémas Pydantic pour les entrées/sorties des visiteurs.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator


class DeviceInfo(BaseModel):
    laptop: bool = False
    mobile: bool = False
    other: Optional[str] = None


class CheckInRequest(BaseModel):
    """
    Enregistrement d'entrée par un agent de sécurité.
    pass_id prioritaire ; à défaut, appointment_id est résolu vers le pass actif du rendez-vous.
    """
    pass_id: Optional[uuid.UUID] = None
    appointment_id: Optional[uuid.UUID] = None
    visitor_id: Optional[uuid.UUID] = None
    temperature: Optional[float] = None
    device_info: Optional[DeviceInfo] = None
    notes: Optional[str] = None
    location: Optional[str] = None

    @field_validator("temperature")
    @classmethod
    def plausible_temperature(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not (30.0 <= v <= 45.0):
            raise ValueError("Température hors plage (30–45 °C).")
        return v


class CheckOutRequest(BaseModel):
    notes: Optional[str] = None


class PassSummary(BaseModel):
    id: uuid.UUID
    pass_number: str
    status: str
    host_id: Optional[uuid.UUID] = None
    valid_from: datetime
    valid_until: datetime

    model_config = {"from_attributes": True}


class CheckLogVisitor(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    photo: Optional[str] = None

    model_config = {"from_attributes": True}


class CheckLogResponse(BaseModel):
    id: uuid.UUID
    pass_id: uuid.UUID
    visitor_id: uuid.UUID
    visitor_pass: Optional[PassSummary] = None
    visitor: Optional[CheckLogVisitor] = None
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    checked_in_by: Optional[uuid.UUID] = None
    checked_out_by: Optional[uuid.UUID] = None
    temperature: Optional[float] = None
    device_info: Optional[DeviceInfo] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    duration: Optional[int] = None   # Minutes, None tant que le visiteur est sur site

    model_config = {"from_attributes": True}


class CheckLogListResponse(BaseModel):
    check_logs: List[CheckLogResponse]
    total_pages: int
    current_page: int
    total: int


class CheckLogStats(BaseModel):
    currently_inside: int
    today_check_ins: int
    today_check_outs: int
    total_visits: int
    average_visit_duration: Optional[int] = None   # Minutes, visites terminées aujourd'hui


class SweepResult(BaseModel):
    """Rapport d'un cycle de sortie automatique."""
    inspected: int
    closed: int
    failed: int
