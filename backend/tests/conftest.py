"""
Configuration partagée pour tous les tests.

- client : TestClient avec get_db remplacée par un MagicMock (aucune connexion PostgreSQL)
- as_actor : fixe l'utilisateur authentifié sans passer par un token JWT
- sqlite_db : session SQLite en mémoire pour les scénarios de bout en bout
"""

import os

# Avant l'import de app.config : pas de scheduler ni d'envoi réel pendant les tests
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("SMS_ENABLED", "false")

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base, get_db, utcnow
from app.main import app
from app.models import Appointment, User, Visitor
from app.security import Actor, get_optional_actor


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def client(mock_db):
    """Client HTTP de test avec la BDD mockée."""
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def as_actor():
    """as_actor("security") authentifie les requêtes suivantes avec ce rôle et retourne l'Actor."""
    def _set(role: str, actor_id=None) -> Actor:
        actor = Actor(id=actor_id or uuid.uuid4(), role=role)
        app.dependency_overrides[get_optional_actor] = lambda: actor
        return actor

    yield _set
    app.dependency_overrides.pop(get_optional_actor, None)


# --- Base SQLite en mémoire ---

@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "PASS_PDF_DIR", str(tmp_path / "passes"))
    monkeypatch.setattr(settings, "UPLOADS_DIR", str(tmp_path))

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def make_user(sqlite_db):
    def _make(role="employee", name="Claire Martin", is_active=True, **kwargs) -> User:
        user = User(
            name=name,
            email=kwargs.pop("email", f"{uuid.uuid4().hex[:8]}@company.com"),
            role=role,
            is_active=is_active,
            **kwargs,
        )
        sqlite_db.add(user)
        sqlite_db.commit()
        return user

    return _make


@pytest.fixture
def make_visitor(sqlite_db):
    def _make(name="Jean Dupont", is_blacklisted=False, **kwargs) -> Visitor:
        visitor = Visitor(
            name=name,
            email=kwargs.pop("email", "jean.dupont@example.com"),
            phone=kwargs.pop("phone", "+32470000000"),
            is_blacklisted=is_blacklisted,
            **kwargs,
        )
        sqlite_db.add(visitor)
        sqlite_db.commit()
        return visitor

    return _make


@pytest.fixture
def make_appointment(sqlite_db):
    """Rendez-vous inséré directement (sans les règles de création)."""
    def _make(host, visitor=None, when=None, duration=60, status="pending", **kwargs) -> Appointment:
        when = when or utcnow() + timedelta(days=1)
        appointment = Appointment(
            host_id=host.id,
            visitor_id=visitor.id if visitor else None,
            appointment_date=when,
            appointment_time=when.strftime("%H:%M"),
            duration=duration,
            purpose=kwargs.pop("purpose", "Réunion projet"),
            location=kwargs.pop("location", "Bâtiment A"),
            status=status,
            **kwargs,
        )
        sqlite_db.add(appointment)
        sqlite_db.commit()
        return appointment

    return _make
