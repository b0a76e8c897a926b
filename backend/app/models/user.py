"""
Modèle SQLAlchemy pour les utilisateurs (hôtes, agents de sécurité, administrateurs, visiteurs).
L'authentification elle-même est gérée par un service externe : on ne lit ici que le rôle et l'état.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, String, Uuid, func

from app.database import Base

VALID_ROLES = {"admin", "security", "employee", "visitor"}


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(30), nullable=True)
    role = Column(String(20), nullable=False, default="employee")  # admin, security, employee, visitor
    department = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
