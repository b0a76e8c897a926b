"""
Identité de l'appelant.

Les tokens JWT sont émis par le service d'authentification ; ici on se contente
de les décoder (HS256, SECRET_KEY partagée) pour obtenir un Actor {id, role}.
Les services font confiance à cet Actor et n'appliquent que les règles
d'appartenance (hôte / visiteur du rendez-vous).
"""

import uuid
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel

from app.config import settings
from app.models.user import VALID_ROLES


class Actor(BaseModel):
    id: uuid.UUID
    role: str  # admin, security, employee, visitor

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_actor(token: str) -> Actor:
    """Décode un token Bearer. Lève HTTPException 401 si invalide."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token invalide.")

    role = str(payload.get("role", "")).lower()
    if "sub" not in payload or role not in VALID_ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Contenu du token invalide.")
    try:
        return Actor(id=uuid.UUID(str(payload["sub"])), role=role)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Contenu du token invalide.")


def get_optional_actor(authorization: Optional[str] = Header(default=None)) -> Optional[Actor]:
    """Acteur si un token Bearer est fourni, None pour les routes publiques."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return decode_actor(authorization.split(" ", 1)[1].strip())


def get_current_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentification requise.")
    return actor


def require_roles(*roles: str):
    """Dépendance FastAPI : restreint une route aux rôles donnés."""
    allowed = {r.lower() for r in roles}

    def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Accès refusé : rôle requis {' ou '.join(sorted(allowed))}.",
            )
        return actor

    return checker
