"""
Schémas Pydantic pour l'émission, la consultation et la vérification des pass.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from app.schemas.appointment import HostSummary, VisitorSummary


class PassIssue(BaseModel):
    """
    Demande d'émission. Toutes les références sont optionnelles :
    pass_service les résout depuis le rendez-vous, les champs explicites ou le profil de l'acteur.
    """
    appointment_id: Optional[uuid.UUID] = None
    visitor_id: Optional[uuid.UUID] = None
    host_id: Optional[uuid.UUID] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    access_areas: List[str] = []
    special_instructions: str = ""

    @field_validator("valid_from", "valid_until")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Les colonnes stockent de l'UTC naïf
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class PassResponse(BaseModel):
    id: uuid.UUID
    pass_number: str
    visitor_id: uuid.UUID
    appointment_id: Optional[uuid.UUID] = None
    issued_by: Optional[uuid.UUID] = None
    host_id: Optional[uuid.UUID] = None
    visitor: Optional[VisitorSummary] = None
    host: Optional[HostSummary] = None
    valid_from: datetime
    valid_until: datetime
    qr_code: Optional[str] = None
    pdf_path: Optional[str] = None
    status: str
    access_areas: Optional[List[str]] = None
    special_instructions: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PassDelivery(BaseModel):
    """Résultat des envois best-effort après émission."""
    document_generated: bool = False
    email_sent: bool = False
    sms_sent: bool = False


class PassIssueResponse(BaseModel):
    visitor_pass: PassResponse = Field(alias="pass")
    delivery: PassDelivery
    created: bool = True   # False si un pass actif existait déjà pour ce rendez-vous

    model_config = {"populate_by_name": True}


class PassListResponse(BaseModel):
    passes: List[PassResponse]
    total_pages: int
    current_page: int
    total: int


class PassStats(BaseModel):
    total: int
    active: int
    expired: int
    revoked: int


class ExpireResult(BaseModel):
    modified_count: int


# --- Vérification ---

class StructuredReference(BaseModel):
    """
    Référence structurée envoyée par un scanner ou un client :
    {"$oid": ...}, {"_id": ...}, {"hexString": ...} ou le contenu JSON d'un QR code de pass.
    """
    oid: Optional[Any] = Field(default=None, alias="$oid")
    ref_id: Optional[Any] = Field(default=None, alias="_id")
    hex_string: Optional[Any] = Field(default=None, alias="hexString")
    pass_number: Optional[Any] = Field(default=None, alias="passNumber")
    appointment_id: Optional[Any] = Field(default=None, alias="appointmentId")

    model_config = {"populate_by_name": True}


VerificationInput = Union[str, int, StructuredReference]


class VerifyRequest(BaseModel):
    """Corps de POST /passes/verify. Le premier champ non nul est vérifié."""
    value: Optional[VerificationInput] = None
    passNumber: Optional[VerificationInput] = None
    appointmentId: Optional[VerificationInput] = None

    def raw_value(self) -> Optional[VerificationInput]:
        for candidate in (self.value, self.passNumber, self.appointmentId):
            if candidate is not None:
                return candidate
        return None


class VerificationResponse(BaseModel):
    valid: bool
    visitor_pass: PassResponse = Field(alias="pass")
    visitor_photo: Optional[str] = None

    model_config = {"populate_by_name": True}
