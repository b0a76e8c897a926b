"""
Modèle SQLAlchemy pour les entrées/sorties des visiteurs.

- check_out_time NULL = visiteur encore sur site
- Une seule session ouverte par pass (index partiel uq_check_logs_open_pass)
- check_out_time n'est écrit qu'une fois : sortie manuelle ou sortie automatique (scheduler)
"""

import uuid
from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import relationship

from app.database import Base


class CheckLog(Base):
    __tablename__ = "check_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pass_id = Column(Uuid, ForeignKey("passes.id"), nullable=False)
    visitor_id = Column(Uuid, ForeignKey("visitors.id"), nullable=False)

    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime, nullable=True)
    checked_in_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    checked_out_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    temperature = Column(Float, nullable=True)
    device_info = Column(JSON, nullable=True)   # {"laptop": bool, "mobile": bool, "other": str}
    notes = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    visitor_pass = relationship("Pass", foreign_keys=[pass_id], lazy="joined")
    visitor = relationship("Visitor", foreign_keys=[visitor_id], lazy="joined")

    __table_args__ = (
        Index(
            "uq_check_logs_open_pass",
            "pass_id",
            unique=True,
            postgresql_where=text("check_out_time IS NULL"),
            sqlite_where=text("check_out_time IS NULL"),
        ),
    )

    @property
    def duration(self):
        """Durée de la visite en minutes entières, None tant que le visiteur est sur site."""
        if self.check_out_time is None:
            return None
        return int((self.check_out_time - self.check_in_time).total_seconds() // 60)
