"""
Modèle SQLAlchemy pour les rendez-vous visiteur ↔ hôte.

Cycle de vie : pending → approved | rejected | cancelled ; approved → cancelled.
Aucune transition ne sort de rejected ou cancelled (voir appointment_service).
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import relationship

from app.database import Base

APPOINTMENT_STATUSES = {"pending", "approved", "rejected", "completed", "cancelled"}


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=True)  # NULL = rendez-vous invité
    host_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    appointment_date = Column(DateTime, nullable=False)      # Date + heure combinées (UTC)
    appointment_time = Column(String(5), nullable=False)     # "HH:MM", copie d'affichage
    duration = Column(Integer, default=60)                   # Minutes
    purpose = Column(Text, nullable=False)
    location = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default="pending")
    approved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    visitor_photo = Column(String(500), nullable=True)
    notifications_sent = Column(Boolean, default=False)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    visitor = relationship("Visitor", foreign_keys=[visitor_id], lazy="joined")
    host = relationship("User", foreign_keys=[host_id], lazy="joined")
