"""
Modèle SQLAlchemy pour les pass visiteurs.

- pass_number unique quel que soit le statut (VP + AAMMJJ + chiffres aléatoires)
- Un seul pass `active` par rendez-vous : vérifié par pass_service avant insertion,
  et garanti par l'index partiel uq_passes_active_appointment en cas de course
- Statuts : active → expired (temps) | revoked (administratif) ; les deux sont terminaux
"""

import uuid
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import relationship

from app.database import Base

PASS_STATUSES = {"active", "expired", "revoked"}


class Pass(Base):
    __tablename__ = "passes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pass_number = Column(String(20), unique=True, index=True, nullable=False)

    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=False)
    appointment_id = Column(Uuid, ForeignKey("appointments.id"), nullable=True)
    issued_by = Column(Uuid, ForeignKey("users.id"), nullable=True)  # NULL si émis automatiquement sans acteur
    host_id = Column(Uuid, ForeignKey("users.id"), nullable=True)

    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)

    qr_code = Column(Text, nullable=True)       # data URI PNG
    pdf_path = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    access_areas = Column(JSON, default=list)
    special_instructions = Column(Text, default="")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    visitor = relationship("Visitor", foreign_keys=[visitor_id], lazy="joined")
    host = relationship("User", foreign_keys=[host_id], lazy="joined")
    appointment = relationship("Appointment", foreign_keys=[appointment_id])

    __table_args__ = (
        Index(
            "uq_passes_active_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
