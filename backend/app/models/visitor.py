"""
Modèle SQLAlchemy pour les profils visiteurs.
L'enregistrement des visiteurs est externe ; le moteur de pass lit le profil
(nom, contacts, photo, liste noire) et met à jour les statistiques de visite.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid, func

from app.database import Base


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), unique=True, nullable=True)  # Compte lié (rôle visitor)
    name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    company = Column(String(150), nullable=True)
    id_type = Column(String(30), default="other")  # passport, driving_license, national_id, other
    id_number = Column(String(100), nullable=True)
    photo = Column(String(500), nullable=True)
    address = Column(Text, nullable=True)
    purpose = Column(Text, nullable=True)
    vehicle_number = Column(String(30), nullable=True)

    visit_count = Column(Integer, default=0)
    last_visit = Column(DateTime, nullable=True)
    is_blacklisted = Column(Boolean, default=False)
    blacklist_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
